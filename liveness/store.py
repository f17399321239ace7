# liveness/store.py
"""Repository used by the reconciler.

``Store`` is the async contract the tracker and controller depend on.
``SqlStore`` backs it with the SQLAlchemy helpers in ``crud``: each call
opens its own ORM session in a worker thread and returns immutable
snapshots, so no connection or identity map is shared between coroutines.
"""
import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, TypeVar
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from . import crud
from .schemas import EntitySnapshot, SessionSnapshot

T = TypeVar("T")


class Store(Protocol):
    async def find_active_entities(self) -> List[EntitySnapshot]: ...

    async def find_entities(self, owner_id: Optional[str] = None,
                            only_active: bool = True) -> List[EntitySnapshot]: ...

    async def get_entity(self, external_id: str) -> Optional[EntitySnapshot]: ...

    async def create_entity(self, fields: Dict[str, Any]) -> EntitySnapshot: ...

    async def update_entity(self, external_id: str, fields: Dict[str, Any],
                            expected_active: Optional[bool] = None) -> Optional[EntitySnapshot]: ...

    async def create_session(self) -> SessionSnapshot: ...

    async def get_session(self, session_id: int) -> Optional[SessionSnapshot]: ...

    async def list_sessions(self, limit: int = 20) -> List[SessionSnapshot]: ...

    async def seed_markers(self, session_id: int, external_ids: Iterable[str]) -> int: ...

    async def find_or_create_seen_marker(self, session_id: int, external_id: str) -> bool: ...

    async def update_seen_marker(self, session_id: int, external_id: str, seen: bool) -> None: ...

    async def find_unseen_markers(self, session_id: int) -> List[str]: ...

    async def last_seen_session_date(self, external_id: str,
                                     before_session_id: int) -> Optional[datetime]: ...

    async def record_inventory(self, session_id: Optional[int], owner_id: str, count: int) -> None: ...


class SqlStore:
    def __init__(self, engine: Engine):
        self.engine = engine
        self._factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

    def _run_sync(self, fn: Callable[[Session], T]) -> T:
        db = self._factory()
        try:
            return fn(db)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def _run(self, fn: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._run_sync, fn)

    async def find_active_entities(self) -> List[EntitySnapshot]:
        return await self.find_entities(only_active=True)

    async def find_entities(self, owner_id=None, only_active=True):
        def op(db):
            return [EntitySnapshot.model_validate(r) for r in crud.find_listings(db, owner_id, only_active)]
        return await self._run(op)

    async def get_entity(self, external_id):
        def op(db):
            obj = crud.get_listing(db, external_id)
            return EntitySnapshot.model_validate(obj) if obj else None
        return await self._run(op)

    async def create_entity(self, fields):
        return await self._run(lambda db: EntitySnapshot.model_validate(crud.upsert_listing(db, fields)))

    async def update_entity(self, external_id, fields, expected_active=None):
        def op(db):
            obj = crud.update_listing(db, external_id, fields, expected_active=expected_active)
            return EntitySnapshot.model_validate(obj) if obj else None
        return await self._run(op)

    async def create_session(self):
        return await self._run(lambda db: SessionSnapshot.model_validate(crud.create_session(db)))

    async def get_session(self, session_id):
        def op(db):
            obj = crud.get_session(db, session_id)
            return SessionSnapshot.model_validate(obj) if obj else None
        return await self._run(op)

    async def list_sessions(self, limit=20):
        return await self._run(
            lambda db: [SessionSnapshot.model_validate(s) for s in crud.list_sessions(db, limit)]
        )

    async def seed_markers(self, session_id, external_ids):
        ids = list(external_ids)
        return await self._run(lambda db: crud.seed_markers(db, session_id, ids))

    async def find_or_create_seen_marker(self, session_id, external_id):
        return await self._run(lambda db: crud.find_or_create_seen_marker(db, session_id, external_id).seen)

    async def update_seen_marker(self, session_id, external_id, seen):
        await self._run(lambda db: crud.update_seen_marker(db, session_id, external_id, seen))

    async def find_unseen_markers(self, session_id):
        return await self._run(lambda db: crud.find_unseen_markers(db, session_id))

    async def last_seen_session_date(self, external_id, before_session_id):
        return await self._run(lambda db: crud.last_seen_session_date(db, external_id, before_session_id))

    async def record_inventory(self, session_id, owner_id, count):
        await self._run(lambda db: crud.record_inventory(db, session_id, owner_id, count))
