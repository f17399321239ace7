# liveness/models.py
"""SQLAlchemy ORM models for listings, reconciliation sessions and the
per-session seen markers that drive mark-and-sweep."""
from sqlalchemy import (
    Boolean, Column, ForeignKey, Index, Integer, Numeric, Text, TIMESTAMP,
    UniqueConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from .db import Base
from .utils import utcnow

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Listing(Base):
    __tablename__ = "listings"
    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(Text, nullable=False, unique=True, index=True)
    owner_id = Column(Text, index=True)
    active = Column(Boolean, nullable=False, default=True)
    last_seen = Column(TIMESTAMP(timezone=True))
    sell_time = Column(Integer)
    title = Column(Text)
    price = Column(Numeric)
    currency = Column(Text)
    make = Column(Text)
    model = Column(Text)
    year = Column(Integer)
    mileage = Column(Integer)
    location = Column(Text)
    url = Column(Text)
    raw_json = Column(JsonType)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)

Index("idx_listings_active", Listing.active)
Index("idx_listings_owner_active", Listing.owner_id, Listing.active)


class ReconcileSession(Base):
    __tablename__ = "reconcile_sessions"
    id = Column(Integer, primary_key=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)


class SeenMarker(Base):
    __tablename__ = "seen_markers"
    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("reconcile_sessions.id"), nullable=False)
    external_id = Column(Text, nullable=False)
    seen = Column(Boolean, nullable=False, default=False)
    __table_args__ = (
        UniqueConstraint("session_id", "external_id", name="uq_seen_markers_session_external"),
    )

Index("idx_seen_markers_session_seen", SeenMarker.session_id, SeenMarker.seen)
Index("idx_seen_markers_external", SeenMarker.external_id)


class InventorySnapshot(Base):
    __tablename__ = "inventory_snapshots"
    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("reconcile_sessions.id"))
    owner_id = Column(Text, nullable=False, index=True)
    count = Column(Integer, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
