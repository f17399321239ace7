# liveness/db.py
"""Database engine and session utilities.

The engine is built lazily from ``POSTGRES_URL`` (or an explicit URL passed
to ``configure_engine``) so importing the package never needs a database.
"""
import os
from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .config import database_url

Base = declarative_base()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

_engine: Optional[Engine] = None


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # store calls run in worker threads
        return create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    # tuned pool settings for cloud DB
    return create_engine(
        url,
        pool_size=int(os.getenv("DB_POOL_SIZE", 5)),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", 10)),
        pool_pre_ping=True
    )


def configure_engine(url: Optional[str] = None) -> Engine:
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(url or database_url())
    SessionLocal.configure(bind=_engine)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        return configure_engine()
    return _engine


def init_db(engine: Optional[Engine] = None) -> None:
    from . import models  # noqa: F401 ensure models are imported so tables are known
    Base.metadata.create_all(bind=engine or get_engine())


def get_db():
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
