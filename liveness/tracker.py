# liveness/tracker.py
"""Mark-and-sweep liveness tracking.

Per session every tracked listing moves from UNSEEN to SEEN when crawl work
re-confirms it, or to DEACTIVATED when the retry policy gives up on it.
Whatever is still UNSEEN once dispatch has settled is swept.

This is the only writer of a listing's ``active``, ``last_seen`` and
``sell_time`` columns. All writes to those columns are conditional on the
current ``active`` value, so a listing is deactivated at most once per
transition no matter how many paths reach it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional
from .retry import DefinitiveFailure
from .schemas import EntitySnapshot, SessionSnapshot
from .store import Store
from .utils import as_utc, logger as default_logger, sell_time_days, utcnow


@dataclass
class SweepReport:
    deactivated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.deactivated)


class LivenessTracker:
    def __init__(self, store: Store, session: SessionSnapshot, only_active: bool = True,
                 logger: Optional[logging.Logger] = None):
        self.store = store
        self.session = session
        self.only_active = only_active
        self.logger = logger or default_logger
        self.seeded = False

    @property
    def session_id(self) -> int:
        return self.session.id

    async def seed(self) -> int:
        """Create one unseen marker per tracked listing. Must finish before dispatch."""
        entities = await self.store.find_entities(only_active=self.only_active)
        ids = [e.external_id for e in entities]
        self.logger.info("Seeding %d markers for session %s", len(ids), self.session_id)
        count = await self.store.seed_markers(self.session_id, ids)
        self.seeded = True
        return count

    async def mark_seen(self, external_id: str) -> None:
        """Idempotent; creates the marker as seen when the listing was not seeded."""
        await self.store.update_seen_marker(self.session_id, external_id, True)
        self.logger.debug("Listing %s marked as seen in session %s", external_id, self.session_id)

    async def reactivate(self, external_id: str) -> Optional[EntitySnapshot]:
        updated = await self.store.update_entity(
            external_id, {"active": True, "sell_time": None}, expected_active=False
        )
        if updated is not None:
            self.logger.info("Listing %s is back at its source, reactivated", external_id)
        return updated

    async def _deactivate(self, entity: EntitySnapshot, last_seen: datetime) -> Optional[EntitySnapshot]:
        sell_time = sell_time_days(entity.created_at, last_seen)
        return await self.store.update_entity(
            entity.external_id,
            {"active": False, "last_seen": last_seen, "sell_time": sell_time},
            expected_active=True,
        )

    async def deactivate_now(self, failure: DefinitiveFailure) -> Optional[EntitySnapshot]:
        """Deactivate on a definitive failure without waiting for the sweep.

        ``last_seen`` is the date of the latest earlier session that saw the
        listing, which is closer to the real disappearance than now. The
        current marker is flipped to seen so the sweep will not visit it.
        """
        if not isinstance(failure, DefinitiveFailure):
            raise TypeError("only a DefinitiveFailure can deactivate a listing outside the sweep")
        external_id = str(failure.key)
        entity = await self.store.get_entity(external_id)
        if entity is None:
            self.logger.error("No listing found for %s", external_id)
            return None
        updated = None
        if entity.active:
            prior = await self.store.last_seen_session_date(external_id, self.session_id)
            if prior is not None:
                last_seen = as_utc(prior)
                self.logger.info("Setting last_seen of %s to session date %s", external_id, last_seen)
            else:
                last_seen = utcnow()
                self.logger.info("Setting last_seen of %s to current date %s", external_id, last_seen)
            updated = await self._deactivate(entity, last_seen)
            if updated is not None:
                self.logger.info("Listing %s marked inactive after %d failed checks (sell_time=%s)",
                                 external_id, failure.attempts, updated.sell_time)
        else:
            self.logger.info("Listing %s already inactive", external_id)
        await self.store.update_seen_marker(self.session_id, external_id, True)
        return updated

    async def sweep(self, exclude_ids: Iterable[str] = (),
                    exclude_owners: Iterable[str] = ()) -> SweepReport:
        """Deactivate every listing whose marker is still unseen, dated to this session.

        Swept markers keep ``seen = false`` as the record of the miss; running
        the sweep again only finds listings that are already inactive.

        ``exclude_ids`` are listings whose check errored this pass and
        ``exclude_owners`` are owners that were never processed. An unseen
        marker for their listings means "unknown", not "gone".
        """
        report = SweepReport()
        exclude_ids = set(exclude_ids)
        exclude_owners = set(exclude_owners)
        unseen = await self.store.find_unseen_markers(self.session_id)
        self.logger.info("Found %d unseen listings to mark as inactive", len(unseen))
        last_seen = as_utc(self.session.created_at)
        for external_id in unseen:
            try:
                if external_id in exclude_ids:
                    self.logger.warning("Listing %s errored this session, not sweeping it", external_id)
                    report.skipped.append(external_id)
                    continue
                entity = await self.store.get_entity(external_id)
                if entity is not None and entity.owner_id in exclude_owners:
                    self.logger.warning("Owner %s of listing %s was not processed, not sweeping it",
                                        entity.owner_id, external_id)
                    report.skipped.append(external_id)
                elif entity is None or not entity.active:
                    report.skipped.append(external_id)
                else:
                    updated = await self._deactivate(entity, last_seen)
                    if updated is not None:
                        report.deactivated.append(external_id)
                        self.logger.info("Listing %s marked as inactive", external_id)
                    else:
                        report.skipped.append(external_id)
            except Exception as e:
                self.logger.exception("Failed to sweep listing %s: %s", external_id, e)
                report.errors.append(external_id)
        self.logger.info("Sweep finished: %d deactivated, %d skipped, %d errors",
                         len(report.deactivated), len(report.skipped), len(report.errors))
        return report
