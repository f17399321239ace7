# liveness/services.py
from typing import Dict, Optional
from .schemas import EntitySnapshot, ListingCreate
from .source import DetailResult
from .store import Store
from .utils import logger

async def ingest_listing(store: Store, payload: Dict) -> EntitySnapshot:
    # Basic normalization/validation
    payload = dict(payload)
    if not payload.get("external_id"):
        raise ValueError("external_id missing")
    for key in ("price",):
        if payload.get(key) is not None:
            try:
                payload[key] = float(payload[key])
            except (TypeError, ValueError):
                payload[key] = None
    for key in ("year", "mileage"):
        if payload.get(key) is not None:
            try:
                payload[key] = int(payload[key])
            except (TypeError, ValueError):
                payload[key] = None
    data = ListingCreate(**payload).model_dump(exclude_none=True)
    entity = await store.create_entity(data)
    logger.info("Ingested listing %s", entity.external_id)
    return entity

async def ingest_detail(store: Store, detail: DetailResult, owner_id: Optional[str]) -> EntitySnapshot:
    payload = {k: v for k, v in detail.fields.items() if k in ListingCreate.model_fields}
    payload["external_id"] = detail.external_id
    payload["owner_id"] = owner_id
    payload.setdefault("url", detail.url)
    return await ingest_listing(store, payload)
