import asyncio

import httpx
import pytest

from conftest import FakeSupabase, creator_row
from services.config import IntegrityConfig
from worker.username_repair import UsernameRepair


def make_repair(store, **kwargs):
    config = kwargs.pop("config", IntegrityConfig(store_max_attempts=2))
    return UsernameRepair(store, config=config, **kwargs)


def by_id(store):
    return {r["id"]: r["username"] for r in store.rows("creators")}


@pytest.mark.asyncio
async def test_restores_usernames_from_display_name_and_platform_id():
    store = FakeSupabase(
        {
            "creators": [
                creator_row(1, "youtube", "UCabc", "hacked", "Mr. Beast"),
                creator_row(2, "twitch", "TwitchID_99", "hacked", "✨✨"),
                creator_row(3, "kick", "k3", "trainwreckstv", "Trainwreck"),
            ]
        }
    )

    summary = await make_repair(store).repair_usernames("hacked")

    assert summary.as_dict() == {"restored": 2, "failed": 0}
    assert by_id(store) == {1: "mrbeast", 2: "twitchid99", 3: "trainwreckstv"}


@pytest.mark.asyncio
async def test_underivable_identity_is_reported():
    store = FakeSupabase(
        {
            "creators": [
                creator_row(1, "youtube", "---", "hacked", "✨"),
                creator_row(2, "youtube", "p2", "hacked", "Good Name"),
            ]
        }
    )

    summary = await make_repair(store).repair_usernames()

    assert summary.restored == 1
    assert len(summary.failed) == 1
    assert summary.failed[0].reason == "InvalidIdentityInput"
    assert "id=1" in summary.failed[0].item
    assert by_id(store)[1] == "hacked"


@pytest.mark.asyncio
async def test_slug_equal_to_sentinel_is_not_written():
    store = FakeSupabase({"creators": [creator_row(1, "youtube", "p1", "hacked", "Hacked")]})

    summary = await make_repair(store).repair_usernames("hacked")

    assert summary.restored == 0
    assert len(summary.failed) == 1


@pytest.mark.asyncio
async def test_store_failure_does_not_abort_run():
    store = FakeSupabase(
        {
            "creators": [
                creator_row(1, "youtube", "p1", "hacked", "Alpha"),
                creator_row(2, "youtube", "p2", "hacked", "Bravo"),
            ]
        }
    )
    store.fail_when(
        lambda q: q.op == "update" and ("eq", "id", 1) in q.described,
        httpx.ConnectError("down"),
    )

    summary = await make_repair(store).repair_usernames()

    assert summary.as_dict() == {"restored": 1, "failed": 1}
    assert by_id(store) == {1: "hacked", 2: "bravo"}


@pytest.mark.asyncio
async def test_rerun_finds_nothing():
    store = FakeSupabase({"creators": [creator_row(1, "youtube", "p1", "hacked", "Alpha")]})

    await make_repair(store).repair_usernames()
    second = await make_repair(store).repair_usernames()

    assert second.as_dict() == {"restored": 0, "failed": 0}
    assert second.scanned == 0


@pytest.mark.asyncio
async def test_collision_restores_suffixed_username():
    store = FakeSupabase(
        {
            "creators": [
                creator_row(1, "youtube", "p1", "alpha", "Alpha"),
                creator_row(2, "youtube", "UCzz-9876", "hacked", "Alpha"),
                creator_row(3, "twitch", "t3", "hacked", "Alpha"),
            ]
        }
    )

    summary = await make_repair(store).repair_usernames()

    assert summary.collisions == 1
    assert summary.restored == 2
    # Same slug on another platform is not a collision
    assert by_id(store) == {1: "alpha", 2: "alphauczz", 3: "alpha"}


@pytest.mark.asyncio
async def test_same_display_name_in_one_run_gets_distinct_usernames():
    store = FakeSupabase(
        {
            "creators": [
                creator_row(1, "youtube", "aaaa1111", "hacked", "Twin"),
                creator_row(2, "youtube", "bbbb2222", "hacked", "Twin"),
            ]
        }
    )

    summary = await make_repair(store).repair_usernames()

    assert summary.restored == 2
    assert sorted(by_id(store).values()) == ["twin", "twinbbbb"]


@pytest.mark.asyncio
async def test_every_variant_taken_is_reported_not_written():
    store = FakeSupabase(
        {
            "creators": [
                creator_row(1, "youtube", "x1", "alpha", "Alpha"),
                creator_row(2, "youtube", "x2", "alphap2", "Other"),
                creator_row(3, "youtube", "p2", "hacked", "Alpha"),
            ]
        }
    )

    summary = await make_repair(store).repair_usernames()

    assert summary.restored == 0
    assert [f.reason for f in summary.failed] == ["username collision"]
    assert by_id(store)[3] == "hacked"


@pytest.mark.asyncio
async def test_update_only_applies_while_sentinel_present():
    """A row repaired elsewhere between fetch and update is skipped."""
    store = FakeSupabase({"creators": [creator_row(1, "youtube", "p1", "hacked", "Alpha")]})
    repair = make_repair(store)
    original = repair._slug_taken

    async def repaired_elsewhere(identity, slug):
        store.rows("creators")[0]["username"] = "manualfix"
        return await original(identity, slug)

    repair._slug_taken = repaired_elsewhere
    summary = await repair.repair_usernames()

    assert summary.restored == 0
    assert summary.skipped == 1
    assert by_id(store)[1] == "manualfix"


@pytest.mark.asyncio
async def test_identity_in_flight_is_not_repaired_twice():
    store = FakeSupabase({"creators": [creator_row(1, "youtube", "p1", "hacked", "Alpha")]})
    repair = make_repair(store)
    repair._in_flight.add(1)

    summary = await repair.repair_usernames()

    assert summary.skipped == 1
    assert by_id(store)[1] == "hacked"


@pytest.mark.asyncio
async def test_pages_through_all_corrupted_rows():
    rows = [creator_row(i, "youtube", f"p{i}", "hacked", f"Creator {i}") for i in range(1, 8)]
    store = FakeSupabase({"creators": rows})

    summary = await make_repair(
        store, config=IntegrityConfig(fetch_batch_size=3, repair_concurrency=2)
    ).repair_usernames()

    assert summary.restored == 7
    assert all(name.startswith("creator") for name in by_id(store).values())


@pytest.mark.asyncio
async def test_dry_run_writes_nothing():
    store = FakeSupabase({"creators": [creator_row(1, "youtube", "p1", "hacked", "Alpha")]})

    summary = await make_repair(store, dry_run=True).repair_usernames()

    assert summary.restored == 1
    assert by_id(store)[1] == "hacked"
    assert not [q for q in store.calls if q.op == "update"]


@pytest.mark.asyncio
async def test_stop_event_prevents_new_batches():
    store = FakeSupabase({"creators": [creator_row(1, "youtube", "p1", "hacked", "Alpha")]})
    stop_event = asyncio.Event()
    stop_event.set()

    summary = await make_repair(store, stop_event=stop_event).repair_usernames()

    assert summary.cancelled
    assert store.calls == []
