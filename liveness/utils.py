# liveness/utils.py
"""Shared utilities: logging setup, time helpers and id de-duplication.

Components take an optional ``logger`` argument and fall back to the
package logger returned by ``get_logger``. Size-bounded log files are an
opt-in sink (``configure_file_sink``) rather than a property of the logger.
"""
import os
import logging
import math
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Iterable, List, Optional
from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024


def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format=LOG_FORMAT,
        level=getattr(logging, level, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("liveness")


def configure_file_sink(path: str, max_bytes: int = DEFAULT_LOG_MAX_BYTES, backups: int = 1,
                        target: Optional[logging.Logger] = None) -> logging.Handler:
    """Attach a size-rotating file handler to ``target`` (package logger by default)."""
    target = target or logger
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    target.addHandler(handler)
    return handler


def configure_file_sink_from_env(target: Optional[logging.Logger] = None) -> Optional[logging.Handler]:
    path = os.getenv("LOG_FILE")
    if not path:
        return None
    max_bytes = int(os.getenv("LOG_MAX_BYTES", DEFAULT_LOG_MAX_BYTES))
    return configure_file_sink(path, max_bytes=max_bytes, target=target)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we write is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sell_time_days(created_at: Optional[datetime], last_seen: datetime) -> int:
    """Whole days between creation and last sighting, never negative."""
    if created_at is None:
        return 0
    days = (as_utc(last_seen) - as_utc(created_at)).total_seconds() / 86400
    return max(0, math.floor(days))


def dedupe_ids(ids: Iterable[Optional[str]]) -> List[str]:
    """Drop blanks and repeats, keeping the first-seen order."""
    seen = set()
    out = []
    for raw in ids:
        if raw is None:
            continue
        value = str(raw).strip()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out
