"""
Graceful shutdown wiring for batch jobs.

Batch jobs check a stop event between batches; SIGINT/SIGTERM only set the
event so the current batch finishes cleanly.
"""

import asyncio
import logging
import signal

logger = logging.getLogger("st_worker")


def install_shutdown_handlers(stop_event: asyncio.Event) -> None:
    """Route SIGINT/SIGTERM to ``stop_event``. Call from inside the running loop."""

    def handle_shutdown_signal(sig, frame):
        logger.info(f"Received signal {sig}, finishing current batch before exit...")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_shutdown_signal)
    signal.signal(signal.SIGTERM, handle_shutdown_signal)
