# liveness/schemas.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from .utils import as_utc

OUTCOME_STATUSES = ("success", "deactivated", "error", "skipped", "rejected")


class EntitySnapshot(BaseModel):
    """Read-only view of a listing row; the store never hands out ORM objects."""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    external_id: str
    owner_id: Optional[str] = None
    active: bool = True
    last_seen: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    sell_time: Optional[int] = None
    title: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    mileage: Optional[int] = None
    location: Optional[str] = None
    url: Optional[str] = None

    @field_validator("last_seen", "created_at", "updated_at")
    @classmethod
    def _utc(cls, v):
        return as_utc(v) if v is not None else v


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v):
        return as_utc(v)


class InventoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    owner_id: str
    session_id: Optional[int] = None
    count: int
    created_at: datetime


class ListingCreate(BaseModel):
    external_id: str = Field(..., max_length=255)
    owner_id: Optional[str] = None
    title: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    mileage: Optional[int] = None
    location: Optional[str] = None
    url: Optional[str] = None
    raw_json: Optional[dict] = None


class Outcome(BaseModel):
    external_id: Optional[str] = None
    owner_id: Optional[str] = None
    status: str
    attempts: int = 0
    detail: Optional[str] = None

    @field_validator("status")
    @classmethod
    def _known_status(cls, v):
        if v not in OUTCOME_STATUSES:
            raise ValueError(f"unknown outcome status {v!r}")
        return v


class PassSummary(BaseModel):
    success: int = 0
    deactivated: int = 0
    error: int = 0
    rejected: int = 0
    skipped: int = 0
    swept: int = 0
    owners: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: List[Outcome], swept: int = 0, owners: int = 0) -> "PassSummary":
        counts: Dict[str, int] = {s: 0 for s in OUTCOME_STATUSES}
        for o in outcomes:
            counts[o.status] += 1
        return cls(swept=swept, owners=owners, **counts)


class PassOut(BaseModel):
    session: Optional[SessionSnapshot] = None
    state: str
    mode: str
    summary: PassSummary
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcomes: List[Outcome] = Field(default_factory=list)


def snapshot(obj: Any) -> EntitySnapshot:
    return EntitySnapshot.model_validate(obj)
