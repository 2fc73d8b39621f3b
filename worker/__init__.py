# worker/__init__.py
"""
Worker package for StatTrack batch maintenance jobs.
"""

from worker.integrity_sweeper import IntegritySweeper, SweepSummary
from worker.username_repair import RepairSummary, UsernameRepair

__all__ = ["IntegritySweeper", "SweepSummary", "UsernameRepair", "RepairSummary"]
