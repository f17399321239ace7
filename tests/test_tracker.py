# tests/test_tracker.py
from datetime import timedelta
import pytest

from conftest import NOW
from liveness import crud
from liveness.models import SeenMarker
from liveness.retry import DefinitiveFailure
from liveness.tracker import LivenessTracker
from liveness.utils import as_utc


def markers(db, session_id):
    db.expire_all()
    return {m.external_id: m.seen for m in db.query(SeenMarker).filter(SeenMarker.session_id == session_id)}


async def new_tracker(store, only_active=True):
    session = await store.create_session()
    return LivenessTracker(store, session, only_active=only_active)


@pytest.mark.asyncio
async def test_seed_creates_one_unseen_marker_per_active_listing(store, db, add_listing):
    for eid in ("A", "B", "C"):
        add_listing(eid)
    add_listing("OLD", active=False)

    tracker = await new_tracker(store)
    assert await tracker.seed() == 3
    assert markers(db, tracker.session_id) == {"A": False, "B": False, "C": False}

    # seeding again never duplicates
    assert await tracker.seed() == 3
    assert db.query(SeenMarker).count() == 3


@pytest.mark.asyncio
async def test_seed_all_listings_when_not_limited_to_active(store, db, add_listing):
    add_listing("A")
    add_listing("OLD", active=False)
    tracker = await new_tracker(store, only_active=False)
    assert await tracker.seed() == 2


@pytest.mark.asyncio
async def test_mark_seen_is_idempotent(store, db, add_listing):
    add_listing("A")
    tracker = await new_tracker(store)
    await tracker.seed()
    await tracker.mark_seen("A")
    await tracker.mark_seen("A")
    rows = db.query(SeenMarker).filter(SeenMarker.external_id == "A").all()
    assert len(rows) == 1
    assert rows[0].seen is True


@pytest.mark.asyncio
async def test_mark_seen_creates_marker_for_unseeded_listing(store, db, add_listing):
    tracker = await new_tracker(store)
    await tracker.seed()
    add_listing("D")
    await tracker.mark_seen("D")
    assert markers(db, tracker.session_id) == {"D": True}


@pytest.mark.asyncio
async def test_deactivate_now_uses_prior_session_date(store, db, add_listing, add_session):
    created = NOW - timedelta(days=20, hours=6)
    add_listing("B", created_at=created)
    earlier = add_session(NOW - timedelta(days=9), seen=["B"])
    add_session(NOW - timedelta(days=5), unseen=["B"])
    tracker = await new_tracker(store)
    await tracker.seed()

    updated = await tracker.deactivate_now(DefinitiveFailure(key="B", attempts=3, last_error="404"))

    assert updated.active is False
    assert updated.last_seen == NOW - timedelta(days=9)
    assert updated.sell_time == 11
    assert markers(db, tracker.session_id) == {"B": True}
    assert earlier < tracker.session_id

    # a second failure for the same listing changes nothing
    again = await tracker.deactivate_now(DefinitiveFailure(key="B", attempts=3, last_error="404"))
    assert again is None
    assert crud.get_listing(db, "B").sell_time == 11


@pytest.mark.asyncio
async def test_deactivate_now_without_history_uses_now(store, add_listing):
    add_listing("B", created_at=NOW - timedelta(hours=2))
    tracker = await new_tracker(store)
    await tracker.seed()
    updated = await tracker.deactivate_now(DefinitiveFailure(key="B", attempts=3, last_error="gone"))
    assert updated.active is False
    assert updated.last_seen >= NOW
    assert updated.sell_time >= 0


@pytest.mark.asyncio
async def test_deactivate_now_requires_definitive_failure(store):
    tracker = await new_tracker(store)
    with pytest.raises(TypeError):
        await tracker.deactivate_now("B")


@pytest.mark.asyncio
async def test_sweep_deactivates_only_unseen_listings(store, db, add_listing):
    add_listing("A", created_at=NOW - timedelta(days=40))
    add_listing("B", created_at=NOW - timedelta(days=40))
    add_listing("OLD", active=False)
    tracker = await new_tracker(store)
    await tracker.seed()
    await tracker.mark_seen("A")

    report = await tracker.sweep()
    assert report.deactivated == ["B"]
    db.expire_all()
    b = crud.get_listing(db, "B")
    assert b.active is False
    assert as_utc(b.last_seen) == tracker.session.created_at
    assert b.sell_time >= 40
    assert crud.get_listing(db, "A").active is True
    assert crud.get_listing(db, "OLD").sell_time is None


@pytest.mark.asyncio
async def test_second_sweep_is_a_no_op(store, db, add_listing):
    add_listing("B", created_at=NOW - timedelta(days=3))
    tracker = await new_tracker(store)
    await tracker.seed()
    first = await tracker.sweep()
    db.expire_all()
    before = crud.get_listing(db, "B")

    second = await tracker.sweep()
    db.expire_all()
    after = crud.get_listing(db, "B")
    assert first.count == 1
    assert second.count == 0
    assert second.skipped == ["B"]
    assert (after.last_seen, after.sell_time) == (before.last_seen, before.sell_time)


@pytest.mark.asyncio
async def test_reactivate_clears_sell_time(store, db, add_listing):
    add_listing("A")
    tracker = await new_tracker(store)
    await tracker.seed()
    await tracker.sweep()
    restored = await tracker.reactivate("A")
    assert restored.active is True
    assert restored.sell_time is None
    assert restored.last_seen is not None
    assert await tracker.reactivate("A") is None
