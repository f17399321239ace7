# liveness/crud.py
"""Row-level operations for listings, sessions and seen markers.

Every helper takes an open ORM ``Session`` and commits its own unit of
work. Upserts go through the dialect's ``INSERT ... ON CONFLICT`` so that
concurrent writers for the same key collapse into one row.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import and_, select, update, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session
from .models import InventorySnapshot, Listing, ReconcileSession, SeenMarker
from .utils import utcnow

# columns only the liveness tracker may write
TRACKER_COLUMNS = ("active", "last_seen", "sell_time")


def _insert(db: Session, table):
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


def upsert_listing(db: Session, data: Dict[str, Any]):
    """Insert a listing or refresh its domain fields; liveness columns are left alone."""
    table = Listing.__table__
    values = {k: v for k, v in data.items() if k not in TRACKER_COLUMNS}
    values.setdefault("created_at", utcnow())
    stmt = _insert(db, table).values(**values)
    # copy the supplied columns from EXCLUDED, never the identity or creation time
    excluded = {k: stmt.excluded[k] for k in values if k not in ("id", "external_id", "created_at")}
    excluded["updated_at"] = utcnow()
    stmt = stmt.on_conflict_do_update(index_elements=["external_id"], set_=excluded)
    db.execute(stmt)
    db.commit()
    return get_listing(db, data["external_id"])

def get_listing(db: Session, external_id: str):
    return db.query(Listing).filter(Listing.external_id == external_id).first()

def find_listings(db: Session, owner_id: Optional[str] = None, only_active: bool = True) -> List[Listing]:
    q = db.query(Listing)
    if owner_id is not None:
        q = q.filter(Listing.owner_id == owner_id)
    if only_active:
        q = q.filter(Listing.active.is_(True))
    return q.order_by(Listing.id).all()

def list_listings(db: Session, skip: int = 0, limit: int = 50, filters: Dict = None):
    q = db.query(Listing)
    if filters:
        conds = []
        if filters.get("active") is not None:
            conds.append(Listing.active.is_(bool(filters["active"])))
        if filters.get("owner_id"):
            conds.append(Listing.owner_id == filters["owner_id"])
        if filters.get("min_price") is not None:
            conds.append(Listing.price >= filters["min_price"])
        if filters.get("max_price") is not None:
            conds.append(Listing.price <= filters["max_price"])
        if filters.get("location"):
            conds.append(Listing.location.ilike(f"%{filters['location']}%"))
        if conds:
            q = q.filter(and_(*conds))
    total = q.count()
    items = q.order_by(Listing.id).offset(skip).limit(limit).all()
    return {"total": total, "items": items}

def update_listing(db: Session, external_id: str, updates: Dict[str, Any],
                   expected_active: Optional[bool] = None):
    """Apply a partial update. With ``expected_active`` the row is only
    touched while its ``active`` flag still has that value."""
    conds = [Listing.external_id == external_id]
    if expected_active is not None:
        conds.append(Listing.active.is_(expected_active))
    values = dict(updates)
    values["updated_at"] = utcnow()
    result = db.execute(update(Listing).where(and_(*conds)).values(**values))
    db.commit()
    if result.rowcount == 0:
        return None
    return get_listing(db, external_id)


def create_session(db: Session) -> ReconcileSession:
    obj = ReconcileSession(created_at=utcnow())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def get_session(db: Session, session_id: int):
    return db.get(ReconcileSession, session_id)

def list_sessions(db: Session, limit: int = 20) -> List[ReconcileSession]:
    return db.query(ReconcileSession).order_by(ReconcileSession.id.desc()).limit(limit).all()


def seed_markers(db: Session, session_id: int, external_ids: Iterable[str]) -> int:
    rows = [{"session_id": session_id, "external_id": eid, "seen": False} for eid in external_ids]
    if rows:
        stmt = _insert(db, SeenMarker.__table__).values(rows)
        stmt = stmt.on_conflict_do_nothing(index_elements=["session_id", "external_id"])
        db.execute(stmt)
        db.commit()
    return db.execute(
        select(func.count()).select_from(SeenMarker).where(SeenMarker.session_id == session_id)
    ).scalar_one()

def get_seen_marker(db: Session, session_id: int, external_id: str):
    return db.query(SeenMarker).filter(
        SeenMarker.session_id == session_id, SeenMarker.external_id == external_id
    ).first()

def find_or_create_seen_marker(db: Session, session_id: int, external_id: str, seen: bool = False):
    stmt = _insert(db, SeenMarker.__table__).values(session_id=session_id, external_id=external_id, seen=seen)
    stmt = stmt.on_conflict_do_nothing(index_elements=["session_id", "external_id"])
    db.execute(stmt)
    db.commit()
    return get_seen_marker(db, session_id, external_id)

def update_seen_marker(db: Session, session_id: int, external_id: str, seen: bool):
    """Set the marker's flag, creating the marker when it does not exist yet."""
    stmt = _insert(db, SeenMarker.__table__).values(session_id=session_id, external_id=external_id, seen=seen)
    stmt = stmt.on_conflict_do_update(
        index_elements=["session_id", "external_id"], set_={"seen": stmt.excluded.seen}
    )
    db.execute(stmt)
    db.commit()
    return get_seen_marker(db, session_id, external_id)

def find_unseen_markers(db: Session, session_id: int) -> List[str]:
    rows = db.execute(
        select(SeenMarker.external_id)
        .where(SeenMarker.session_id == session_id, SeenMarker.seen.is_(False))
        .order_by(SeenMarker.id)
    ).scalars().all()
    return list(rows)

def last_seen_session_date(db: Session, external_id: str, before_session_id: int) -> Optional[datetime]:
    """Creation date of the latest earlier session that saw ``external_id``."""
    return db.execute(
        select(ReconcileSession.created_at)
        .join(SeenMarker, SeenMarker.session_id == ReconcileSession.id)
        .where(
            SeenMarker.external_id == external_id,
            SeenMarker.seen.is_(True),
            SeenMarker.session_id < before_session_id,
        )
        .order_by(ReconcileSession.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def record_inventory(db: Session, session_id: Optional[int], owner_id: str, count: int) -> InventorySnapshot:
    obj = InventorySnapshot(session_id=session_id, owner_id=owner_id, count=count, created_at=utcnow())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def latest_inventory(db: Session, owner_id: str):
    return db.query(InventorySnapshot).filter(
        InventorySnapshot.owner_id == owner_id
    ).order_by(InventorySnapshot.id.desc()).first()
