# liveness/api/routes.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from .. import crud, schemas
from ..config import load_settings, load_source_settings
from ..errors import ConfigError
from ..controller import SessionController
from ..db import get_db, get_engine
from ..source import HttpSourceAdapter
from ..store import SqlStore
from ..utils import logger

router = APIRouter()


def get_store():
    return SqlStore(get_engine())


async def get_source():
    adapter = HttpSourceAdapter(load_source_settings())
    try:
        yield adapter
    finally:
        await adapter.aclose()


@router.get("/health")
def health():
    return {"status": "ok"}

@router.get("/listings", response_model=List[schemas.EntitySnapshot])
def listings(
    skip: int = 0,
    limit: int = 20,
    active: Optional[bool] = Query(None),
    owner_id: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None),
    max_price: Optional[float] = Query(None),
    location: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    filters = {
        "active": active,
        "owner_id": owner_id,
        "min_price": min_price,
        "max_price": max_price,
        "location": location
    }
    res = crud.list_listings(db, skip=skip, limit=limit, filters=filters)
    return [schemas.snapshot(obj) for obj in res["items"]]


@router.get("/listings/{external_id}", response_model=schemas.EntitySnapshot)
def get_listing(external_id: str, db: Session = Depends(get_db)):
    obj = crud.get_listing(db, external_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Listing not found")
    return schemas.snapshot(obj)


@router.get("/owners/{owner_id}/inventory", response_model=schemas.InventoryOut)
def owner_inventory(owner_id: str, db: Session = Depends(get_db)):
    """How many listings the owner's page showed at its last successful crawl."""
    obj = crud.latest_inventory(db, owner_id)
    if not obj:
        raise HTTPException(status_code=404, detail="No inventory recorded for owner")
    return schemas.InventoryOut.model_validate(obj)


@router.get("/sessions", response_model=List[schemas.SessionSnapshot])
def sessions(limit: int = 20, db: Session = Depends(get_db)):
    return [schemas.SessionSnapshot.model_validate(s) for s in crud.list_sessions(db, limit)]


@router.post("/sessions", response_model=schemas.PassOut)
async def run_session(
    mode: Optional[str] = Query(None),
    outcomes: bool = Query(False),
    store=Depends(get_store),
    source=Depends(get_source),
):
    try:
        settings = load_settings(mode=mode)
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    try:
        result = await SessionController(store, source, settings).run()
    except Exception as e:
        logger.exception("Reconcile pass failed: %s", e)
        raise HTTPException(status_code=500, detail="Reconcile pass failed")
    return result.to_schema(with_outcomes=outcomes)
