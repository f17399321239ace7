# liveness/source.py
"""Source adapters: where owners, their listing ids and listing pages come from.

The reconciler only consumes the tri-state answer of ``fetch_entity_detail``:
a ``DetailResult`` when the listing is there, ``NotPresent`` when the page
says it is gone, or a raised ``TransientError`` when the answer is unknown.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Union
from urllib.parse import urljoin
import httpx
from bs4 import BeautifulSoup
from .config import SourceSettings
from .errors import ConfigError, TransientError
from .retry import NotPresent
from .utils import dedupe_ids, logger as default_logger

_bs_parser = "lxml"

# statuses that say nothing about whether the listing exists
BLOCKED_STATUSES = (401, 403, 408, 425, 429)
GONE_STATUSES = (404, 410)


@dataclass(frozen=True)
class OwnerRef:
    id: str
    name: Optional[str] = None
    source_url: Optional[str] = None


@dataclass(frozen=True)
class DetailResult:
    external_id: str
    url: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)


class SourceAdapter(Protocol):
    async def list_known_owners(self) -> List[OwnerRef]: ...

    async def enumerate_entities_for_owner(self, owner: OwnerRef) -> Union[List[str], NotPresent]: ...

    async def fetch_entity_detail(self, external_id: str) -> Union[DetailResult, NotPresent]: ...


def extract_fields(html: str, url: Optional[str] = None) -> Dict[str, Any]:
    """Best-effort generic fields from a listing page."""
    soup = BeautifulSoup(html, _bs_parser)
    title = soup.find("meta", property="og:title")
    title = title["content"].strip() if title and title.get("content") else (
        soup.title.string.strip() if soup.title and soup.title.string else None)
    text_blob = soup.get_text(" ", strip=True)
    price_m = re.search(r"([€\$£]|EUR|CHF)\s*([0-9][0-9\.,'\s]*[0-9])", text_blob)
    price = None
    currency = None
    if price_m:
        digits = re.sub(r"[^\d]", "", price_m.group(2))
        price = float(digits) if digits else None
        currency = price_m.group(1)
    year_m = re.search(r"\b(19|20)\d{2}\b", text_blob)
    year = int(year_m.group(0)) if year_m else None
    mileage_m = re.search(r"(\d{1,3}(?:[\.,' ]\d{3})+|\d{2,6})\s*(km|kilometers|kms)\b", text_blob, re.I)
    mileage = int(re.sub(r"[^\d]", "", mileage_m.group(1))) if mileage_m else None
    location = None
    loc = soup.select_one("[data-testid*='location'], [class*='location']")
    if loc:
        location = loc.get_text(" ", strip=True)
    return {
        "title": title,
        "price": price,
        "currency": currency,
        "year": year,
        "mileage": mileage,
        "location": location,
        "url": url,
        "raw_json": {"snippet": str(soup)[:4000]},
    }


def presence_matches(html: str, selectors: List[str]) -> int:
    soup = BeautifulSoup(html, _bs_parser)
    return sum(1 for sel in selectors if soup.select_one(sel) is not None)


class HttpSourceAdapter:
    def __init__(self, settings: SourceSettings, client: Optional[httpx.AsyncClient] = None,
                 max_pages: int = 50, logger=None):
        self.settings = settings
        self.max_pages = max_pages
        self.logger = logger or default_logger
        self._id_re = re.compile(settings.listing_id_pattern)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=settings.http_timeout_s,
            follow_redirects=True,
            verify=not settings.allow_insecure_tls,
            headers={
                "user-agent": settings.user_agent,
                "accept-language": "fr-BE,fr;q=0.9,en;q=0.8",
                "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    async def _get(self, url, **kwargs) -> httpx.Response:
        try:
            response = await self.client.get(url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientError(f"timeout fetching {url}: {e}")
        except httpx.RequestError as e:
            # transport failures, redirect loops, undecodable bodies
            raise TransientError(f"{type(e).__name__} fetching {url}: {e}")
        status = response.status_code
        if status in BLOCKED_STATUSES or status >= 500:
            raise TransientError(f"HTTP {status} from {url}", status_code=status)
        return response

    def listing_id(self, href: str) -> Optional[str]:
        m = self._id_re.search(href or "")
        return m.group(1) if m else None

    def detail_url(self, external_id: str) -> str:
        return f"{self.settings.detail_base_url.rstrip('/')}/{external_id}"

    async def list_known_owners(self) -> List[OwnerRef]:
        if not self.settings.api_url:
            raise ConfigError("API_URL not set")
        url = f"{self.settings.api_url.rstrip('/')}{self.settings.owners_path}"
        self.logger.info("Fetching owners from: %s", url)
        response = await self._get(url)
        if response.status_code != 200:
            raise TransientError(f"HTTP {response.status_code} from {url}", status_code=response.status_code)
        rows = response.json()
        if isinstance(rows, dict):
            rows = rows.get("data") or []
        owners = []
        for row in rows:
            if row.get("id") is None:
                continue
            owners.append(OwnerRef(
                id=str(row["id"]),
                name=row.get("company_name") or row.get("name"),
                source_url=row.get("source_url") or row.get("autoscout_url"),
            ))
        return owners

    def _ids_from_page(self, html: str, base_url: str) -> List[str]:
        soup = BeautifulSoup(html, _bs_parser)
        ids = []
        for a in soup.select("a[href]"):
            href = urljoin(base_url, a.get("href"))
            ids.append(self.listing_id(href))
        for article in soup.select("article[id]"):
            ids.append(article.get("id"))
        return dedupe_ids(ids)

    async def enumerate_entities_for_owner(self, owner: OwnerRef) -> Union[List[str], NotPresent]:
        if not owner.source_url:
            return NotPresent("owner has no source url")
        found: List[str] = []
        known = set()
        for page in range(1, self.max_pages + 1):
            url = owner.source_url if page == 1 else httpx.URL(owner.source_url).copy_merge_params({"page": page})
            response = await self._get(url)
            if response.status_code in GONE_STATUSES:
                if page == 1:
                    return NotPresent(f"owner page returned HTTP {response.status_code}")
                break
            ids = self._ids_from_page(response.text, str(response.url))
            new_ids = [i for i in ids if i not in known]
            self.logger.info("Owner %s page %d: %d listings (%d new)", owner.id, page, len(ids), len(new_ids))
            if not new_ids:
                break
            found.extend(new_ids)
            known.update(new_ids)
        if not found:
            return NotPresent("no listings found on owner page")
        return found

    async def fetch_entity_detail(self, external_id: str) -> Union[DetailResult, NotPresent]:
        url = self.detail_url(external_id)
        response = await self._get(url)
        # 404/410 and any other client error left over after _get
        if response.status_code >= 400:
            return NotPresent(f"HTTP {response.status_code}")
        html = response.text or ""
        matched = presence_matches(html, self.settings.presence_selectors)
        if matched < self.settings.presence_min_matches:
            return NotPresent(f"listing elements not found on page ({matched}/{self.settings.presence_min_matches})")
        return DetailResult(external_id=external_id, url=url, fields=extract_fields(html, url))
