import asyncio
import logging
from datetime import date

import click
from dotenv import load_dotenv

from db import init_supabase, setup_logging
from services.config import IntegrityConfig
from services.creator_search import CreatorSearch
from services.errors import SweepAlreadyRunning
from services.history_audit import CheckStatus, HistoryAuditor, overall_status
from services.models import Platform, StatSnapshot
from services.snapshot_recorder import SnapshotRecorder
from worker.integrity_sweeper import IntegritySweeper
from worker.signals import install_shutdown_handlers
from worker.username_repair import UsernameRepair

# --- Setup logging once for CLI ---
load_dotenv()
setup_logging()
logger = logging.getLogger("st_cli")

STATUS_ICONS = {
    CheckStatus.PASS: "✅",
    CheckStatus.WARN: "⚠️ ",
    CheckStatus.FAIL: "❌",
}


def _require_client():
    client = init_supabase()
    if client is None:
        raise click.ClickException(
            "Supabase is not configured (set NEXT_PUBLIC_SUPABASE_URL and "
            "SUPABASE_SERVICE_ROLE_KEY)"
        )
    return client


@click.group()
def cli():
    """StatTrack maintenance CLI: search, snapshot recording and integrity jobs."""


@cli.command()
@click.argument("query")
@click.option(
    "--platform",
    type=click.Choice([p.value for p in Platform]),
    default=None,
    help="Only return creators on this platform",
)
@click.option("--limit", default=20, show_default=True, help="Maximum results")
def search(query, platform, limit):
    """Fuzzy-search creators by username or display name."""
    results = CreatorSearch(_require_client()).search(query, platform=platform, limit=limit)
    if not results:
        click.echo("No creators found.")
        return
    for rank, creator in enumerate(results, start=1):
        click.echo(
            f"{rank:>3}. @{creator.username} ({creator.platform}) - {creator.display_name or ''}"
        )


@cli.command()
@click.argument("creator_id")
@click.argument("subscribers", type=int)
@click.option(
    "--date",
    "recorded_at",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Snapshot day (defaults to today in STATS_TIMEZONE)",
)
@click.option("--views", type=int, default=None, help="Total views")
@click.option("--posts", type=int, default=None, help="Total posts/videos")
@click.option(
    "--duplicate-mode",
    type=click.Choice(["overwrite", "reject"]),
    default=None,
    help="Override SNAPSHOT_DUPLICATE_MODE for this write",
)
def record(creator_id, subscribers, recorded_at, views, posts, duplicate_mode):
    """Validate and store one daily snapshot."""
    config = IntegrityConfig(duplicate_mode=duplicate_mode) if duplicate_mode else IntegrityConfig()
    recorder = SnapshotRecorder(_require_client(), config=config)
    day: date = recorded_at.date() if recorded_at else recorder.clock()

    outcome = recorder.record(
        StatSnapshot(
            creator_id=creator_id,
            recorded_at=day,
            subscribers=subscribers,
            total_views=views,
            total_posts=posts,
        )
    )
    if outcome.written:
        click.echo(f"✅ Recorded {creator_id} @ {day} ({outcome.validation.verdict.value})")
    else:
        click.echo(f"❌ Rejected {creator_id} @ {day}: {outcome.reason.value}")
        raise SystemExit(1)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Report what would change without deleting")
def sweep(dry_run):
    """Remove zero/null snapshots and collapse duplicate days."""
    client = _require_client()

    async def _sweep():
        stop_event = asyncio.Event()
        install_shutdown_handlers(stop_event)
        return await IntegritySweeper(client, stop_event=stop_event, dry_run=dry_run).sweep()

    try:
        summary = asyncio.run(_sweep())
    except SweepAlreadyRunning as e:
        raise click.ClickException(str(e))
    click.echo(summary.as_dict())
    if summary.failures:
        raise SystemExit(1)


@cli.command("repair-usernames")
@click.option(
    "--sentinel", default="hacked", show_default=True, help="Placeholder username to repair"
)
@click.option("--dry-run", is_flag=True, help="Log derived usernames without writing")
def repair_usernames(sentinel, dry_run):
    """Restore usernames overwritten with a placeholder value."""
    client = _require_client()

    async def _repair():
        stop_event = asyncio.Event()
        install_shutdown_handlers(stop_event)
        return await UsernameRepair(
            client, stop_event=stop_event, dry_run=dry_run
        ).repair_usernames(sentinel)

    summary = asyncio.run(_repair())
    click.echo(summary.as_dict())
    if summary.failed:
        raise SystemExit(1)


@cli.command()
@click.argument("creator_id")
def audit(creator_id):
    """Run the history checks (staleness, zeros, swings, gaps) for one creator."""
    results = HistoryAuditor(_require_client()).audit_creator(creator_id)
    if results is None:
        raise click.ClickException(f"Creator {creator_id} not found")

    for result in results:
        click.echo(f"  {STATUS_ICONS[result.status]} {result.name}: {result.detail}")

    status = overall_status(results)
    click.echo(f"Overall: {status.value}")
    if status is CheckStatus.FAIL:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
