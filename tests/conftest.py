# tests/conftest.py
from datetime import datetime, timedelta, timezone
import pytest
from sqlalchemy.orm import sessionmaker

from liveness import crud
from liveness.db import build_engine, init_db
from liveness.source import DetailResult
from liveness.store import SqlStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

LISTING_HTML = """
<html><head>
  <title>fallback</title>
  <meta property="og:title" content="Volkswagen Golf 1.6 TDI" />
</head><body>
  <div class="StageTitle_makeModelContainer">Volkswagen Golf</div>
  <div data-testid="price-section">€ 12.500,-</div>
  <p>First registration 2019, 85.000 km</p>
  <span data-testid="location-text">Brussels</span>
</body></html>
"""


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'liveness.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db(db_factory):
    session = db_factory()
    yield session
    session.close()


@pytest.fixture
def store(engine):
    return SqlStore(engine)


@pytest.fixture
def add_listing(db_factory):
    def _add(external_id, owner_id="1", created_at=None, active=True, **fields):
        with db_factory() as db:
            crud.upsert_listing(db, {
                "external_id": external_id,
                "owner_id": owner_id,
                "created_at": created_at or NOW - timedelta(days=30),
                **fields,
            })
            if not active:
                crud.update_listing(db, external_id, {"active": False})
            return crud.get_listing(db, external_id)
    return _add


@pytest.fixture
def add_session(db_factory):
    """Create a past session whose markers record ``seen`` for the given ids."""
    def _add(created_at, seen=(), unseen=()):
        with db_factory() as db:
            s = crud.create_session(db)
            s.created_at = created_at
            db.commit()
            for eid in seen:
                crud.update_seen_marker(db, s.id, eid, True)
            for eid in unseen:
                crud.update_seen_marker(db, s.id, eid, False)
            return s.id
    return _add


class FakeSource:
    """Scripted source adapter.

    ``details`` maps an external id to a list of steps; each call consumes one
    step and the last one repeats. A step is returned, or raised when it is an
    exception. Ids without a script are present.
    """

    def __init__(self, owners=None, listings=None, details=None, owners_error=None):
        self.owners = owners or []
        self.listings = listings or {}
        self.details = {k: list(v) for k, v in (details or {}).items()}
        self.owners_error = owners_error
        self.detail_calls = []
        self.enumerate_calls = []

    async def list_known_owners(self):
        if self.owners_error is not None:
            raise self.owners_error
        return list(self.owners)

    async def enumerate_entities_for_owner(self, owner):
        self.enumerate_calls.append(owner.id)
        value = self.listings.get(owner.id, [])
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_entity_detail(self, external_id):
        self.detail_calls.append(external_id)
        script = self.details.get(external_id)
        if not script:
            return DetailResult(external_id=external_id, url=f"https://example.test/offers/{external_id}",
                                fields={"title": f"Listing {external_id}", "price": "12500"})
        step = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(step, Exception):
            raise step
        return step


async def no_sleep(_seconds):
    return None
