"""
Bulk username repair.

Finds creators whose username was overwritten with a known placeholder
(the sentinel, "hacked" in the original incident), derives a fresh slug from
the display name (falling back to the platform id) and writes it back. When
that slug is already used on the platform, the first free variant suffixed
with platform id characters is written instead.

Best effort: a failing identity is recorded and the run continues. Different
identities are repaired concurrently; the same identity is never repaired
twice at once, and each update only applies while the row still holds the
sentinel.

Run as: python cli.py repair-usernames --sentinel hacked
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import db
from constants import CORRUPTED_USERNAME_SENTINEL, CREATOR_COLUMNS, CREATOR_TABLE
from services.batch import BatchFailure
from services.config import IntegrityConfig
from services.errors import StoreError
from services.models import CreatorIdentity
from services.normalizer import derive_username, username_candidates

logger = logging.getLogger("st_repair")

PROGRESS_EVERY = 100


@dataclass
class RepairSummary:
    scanned: int = 0
    restored: int = 0
    skipped: int = 0  # already repaired by someone else / in flight
    collisions: int = 0  # derived slug already used; a suffixed variant was written
    failed: List[BatchFailure] = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False
    started_at: float = field(default_factory=time.time)

    def as_dict(self) -> Dict[str, int]:
        return {"restored": self.restored, "failed": len(self.failed)}

    def summary(self) -> str:
        lines = [
            "=" * 50,
            f"  ✅ Restored:   {self.restored}",
            f"  ❌ Failed:     {len(self.failed)}",
            f"  ⏭️  Skipped:    {self.skipped}",
            f"  ⚠️  Collisions: {self.collisions}",
            f"  Scanned:      {self.scanned} in {time.time() - self.started_at:.1f}s",
        ]
        if self.dry_run:
            lines.append("  (dry run: no usernames were written)")
        if self.cancelled:
            lines.append("  Stopped on request between batches.")
        for failure in self.failed[:20]:
            lines.append(f"    - {failure.item}: {failure.reason}")
        if len(self.failed) > 20:
            lines.append(f"    ... and {len(self.failed) - 20} more")
        lines.append("=" * 50)
        return "\n".join(lines)


class UsernameRepair:
    def __init__(
        self,
        client: db.SupabaseLike,
        config: Optional[IntegrityConfig] = None,
        stop_event: Optional[asyncio.Event] = None,
        dry_run: bool = False,
    ):
        self.client = client
        self.config = config or IntegrityConfig()
        self.stop_event = stop_event or asyncio.Event()
        self.dry_run = dry_run
        self._in_flight: Set[Any] = set()
        # (platform, username) pairs handed out during the current run
        self._claimed: Set[Tuple[str, str]] = set()

    async def _call(self, query_fn):
        return await db.execute_async(
            query_fn,
            timeout=self.config.store_timeout,
            attempts=self.config.store_max_attempts,
        )

    async def _fetch_corrupted(self, sentinel: str, after_id: Any) -> List[CreatorIdentity]:
        def _query():
            query = (
                self.client.table(CREATOR_TABLE)
                .select(CREATOR_COLUMNS)
                .eq("username", sentinel)
            )
            if after_id is not None:
                query = query.gt("id", after_id)
            return query.order("id").limit(self.config.fetch_batch_size).execute()

        response = await self._call(_query)
        return [CreatorIdentity.from_row(row) for row in response.data or []]

    async def _slug_taken(self, identity: CreatorIdentity, slug: str) -> bool:
        response = await self._call(
            lambda: self.client.table(CREATOR_TABLE)
            .select("id")
            .eq("platform", identity.platform)
            .eq("username", slug)
            .neq("id", identity.id)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    async def _free_username(
        self, identity: CreatorIdentity, slug: str, sentinel: str
    ) -> Optional[str]:
        """First candidate not used on the identity's platform, nor claimed earlier in this run."""
        for candidate in username_candidates(slug, identity.platform_id):
            key = (identity.platform, candidate)
            if candidate == sentinel or key in self._claimed:
                continue
            # Claimed before the lookup so a concurrent repair cannot pick it too
            self._claimed.add(key)
            if not await self._slug_taken(identity, candidate):
                return candidate
        return None

    async def _repair_one(
        self,
        identity: CreatorIdentity,
        sentinel: str,
        summary: RepairSummary,
        semaphore: asyncio.Semaphore,
    ) -> None:
        label = f"{identity.display_name or identity.platform_id} ({identity.platform}, id={identity.id})"

        if identity.id in self._in_flight:
            logger.debug(f"  ⏭️  {label} is already being repaired")
            summary.skipped += 1
            return
        self._in_flight.add(identity.id)

        try:
            derived = derive_username(identity.display_name, identity.platform_id)
            if not derived.ok:
                logger.warning(f"  ❌ {label}: cannot derive a username")
                summary.failed.append(BatchFailure(item=label, reason=derived.error.value))
                return
            if derived.slug == sentinel:
                summary.failed.append(
                    BatchFailure(item=label, reason=f"derived username equals sentinel '{sentinel}'")
                )
                return

            async with semaphore:
                username = await self._free_username(identity, derived.slug, sentinel)
                if username is None:
                    logger.warning(f"  ❌ {label}: @{derived.slug} and every suffixed variant are taken")
                    summary.failed.append(BatchFailure(item=label, reason="username collision"))
                    return
                if username != derived.slug:
                    summary.collisions += 1
                    logger.warning(
                        f"  ⚠️  @{derived.slug} is already used on {identity.platform}; "
                        f"restoring {label} as @{username}"
                    )

                if self.dry_run:
                    logger.info(f"  [DryRun] {label} → @{username}")
                    summary.restored += 1
                    return

                response = await self._call(
                    lambda: self.client.table(CREATOR_TABLE)
                    .update({"username": username})
                    .eq("id", identity.id)
                    .eq("username", sentinel)
                    .execute()
                )

            if not response.data:
                logger.info(f"  ⏭️  {label} no longer holds the sentinel; skipped")
                summary.skipped += 1
                return

            summary.restored += 1
            logger.info(f"  ✅ Restored: {label} → @{username} (from {derived.source})")
            if summary.restored % PROGRESS_EVERY == 0:
                logger.info(f"--- Progress: {summary.restored} restored ---")

        except StoreError as e:
            logger.error(f"  ❌ Failed: {label} - {e}")
            summary.failed.append(BatchFailure(item=label, reason=str(e)))
        finally:
            self._in_flight.discard(identity.id)

    async def repair_usernames(
        self, sentinel: str = CORRUPTED_USERNAME_SENTINEL
    ) -> RepairSummary:
        """
        Restore every identity whose username equals ``sentinel``.

        Returns:
            RepairSummary; ``as_dict()`` gives {restored, failed}.
        """
        summary = RepairSummary(dry_run=self.dry_run)
        self._claimed.clear()
        semaphore = asyncio.Semaphore(self.config.repair_concurrency)
        last_id: Any = None

        logger.info(
            f"🔧 Starting username restoration (sentinel='{sentinel}', "
            f"concurrency={self.config.repair_concurrency}, dry_run={self.dry_run})"
        )

        while True:
            if self.stop_event.is_set():
                summary.cancelled = True
                logger.info("Stop requested, ending repair between batches")
                break

            try:
                batch = await self._fetch_corrupted(sentinel, last_id)
            except StoreError as e:
                logger.error(f"❌ Error fetching compromised creators after id={last_id}: {e}")
                summary.failed.append(
                    BatchFailure(item=f"fetch after id={last_id}", reason=str(e))
                )
                break

            if not batch:
                break

            summary.scanned += len(batch)
            last_id = batch[-1].id
            logger.info(f"Found {len(batch)} compromised creator(s) in this batch")

            await asyncio.gather(
                *(self._repair_one(identity, sentinel, summary, semaphore) for identity in batch)
            )

            if len(batch) < self.config.fetch_batch_size:
                break

        logger.info("\n" + summary.summary())
        return summary
