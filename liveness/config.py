# liveness/config.py
"""Runtime configuration read from the environment (and a local .env file).

``ReconcileSettings`` drives the session controller, executor and retry
policy; ``SourceSettings`` drives the HTTP source adapter.
"""
import os
from typing import List, Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator
from .errors import ConfigError

load_dotenv()

MODES = ("crawl", "check")
DEFAULT_PRESENCE_SELECTORS = [
    "meta[property='og:title']",
    "[data-testid='price-section']",
    "[class*='PriceInfo']",
    "[class*='StageTitle']",
    "#lead-form-lightbox-desktop-button",
    "#call-desktop-button",
]


class ReconcileSettings(BaseModel):
    owner_concurrency_limit: int = Field(5, ge=1)
    item_concurrency_limit: int = Field(5, ge=1)
    retry_max_attempts: int = Field(3, ge=1)
    retry_delay_ms: int = Field(1000, ge=0)
    inter_batch_delay_ms: int = Field(2000, ge=0)
    only_active_entities: bool = True
    batch_cap: int = Field(10, ge=1)
    mode: str = "crawl"
    reactivate_on_sighting: bool = True

    @field_validator("mode")
    @classmethod
    def _known_mode(cls, v):
        v = v.strip().lower()
        if v not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {v!r}")
        return v

    @property
    def retry_delay(self) -> float:
        return self.retry_delay_ms / 1000.0

    @property
    def inter_batch_delay(self) -> float:
        return self.inter_batch_delay_ms / 1000.0


class SourceSettings(BaseModel):
    api_url: Optional[str] = None
    owners_path: str = "/auth/autoscout-scraper-user-infos"
    detail_base_url: str = "https://www.autoscout24.com/offers"
    listing_id_pattern: str = r"/offers/([^/?#]+)"
    presence_selectors: List[str] = Field(default_factory=lambda: list(DEFAULT_PRESENCE_SELECTORS))
    presence_min_matches: int = Field(2, ge=1)
    http_timeout_s: float = Field(30.0, gt=0)
    allow_insecure_tls: bool = False
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _collect(mapping: dict) -> dict:
    return {k: v for k, v in mapping.items() if v is not None}


def load_settings(**overrides) -> ReconcileSettings:
    values = _collect({
        "owner_concurrency_limit": _env_int("OWNER_CONCURRENCY_LIMIT"),
        "item_concurrency_limit": _env_int("ITEM_CONCURRENCY_LIMIT"),
        "retry_max_attempts": _env_int("RETRY_MAX_ATTEMPTS"),
        "retry_delay_ms": _env_int("RETRY_DELAY_MS"),
        "inter_batch_delay_ms": _env_int("INTER_BATCH_DELAY_MS"),
        "only_active_entities": _env_bool("ONLY_ACTIVE_ENTITIES"),
        "batch_cap": _env_int("BATCH_CAP"),
        "mode": os.getenv("RECONCILE_MODE") or None,
        "reactivate_on_sighting": _env_bool("REACTIVATE_ON_SIGHTING"),
    })
    values.update(_collect(overrides))
    try:
        return ReconcileSettings(**values)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def load_source_settings(**overrides) -> SourceSettings:
    selectors = os.getenv("PRESENCE_SELECTORS")
    values = _collect({
        "api_url": os.getenv("API_URL") or None,
        "owners_path": os.getenv("OWNERS_PATH") or None,
        "detail_base_url": os.getenv("DETAIL_BASE_URL") or None,
        "listing_id_pattern": os.getenv("LISTING_ID_PATTERN") or None,
        "presence_selectors": [s.strip() for s in selectors.split("||") if s.strip()] if selectors else None,
        "presence_min_matches": _env_int("PRESENCE_MIN_MATCHES"),
        "http_timeout_s": _env_float("HTTP_TIMEOUT_S"),
        "allow_insecure_tls": _env_bool("ALLOW_INSECURE_TLS"),
        "user_agent": os.getenv("USER_AGENT") or None,
    })
    values.update(_collect(overrides))
    try:
        return SourceSettings(**values)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def database_url() -> str:
    url = os.getenv("POSTGRES_URL")
    if not url:
        raise ConfigError("POSTGRES_URL not set")
    # SQLAlchemy 2.x doesn't accept 'postgres://'
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url
