# liveness/controller.py
"""One reconciliation pass, from session creation to sweep.

    CREATED -> SEEDING -> DISPATCHING -> SWEEPING -> COMPLETE

Any phase may end in FAILED instead. Only failures that make the whole pass meaningless (no session row, no
seed, no owner list) end in FAILED. Everything that goes wrong for a single
owner or listing is written to the outcome log and the pass carries on.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Set
from . import services
from .config import ReconcileSettings
from .errors import InvalidTransition, SessionFatalError
from .executor import BatchExecutor, rejected_outcome
from .retry import Confirmed, DefinitiveFailure, RetryPolicy
from .schemas import EntitySnapshot, Outcome, PassOut, PassSummary, SessionSnapshot
from .source import OwnerRef, SourceAdapter
from .store import Store
from .tracker import LivenessTracker, SweepReport
from .utils import dedupe_ids, logger as default_logger, utcnow


class SessionState(str, Enum):
    CREATED = "CREATED"
    SEEDING = "SEEDING"
    DISPATCHING = "DISPATCHING"
    SWEEPING = "SWEEPING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


TRANSITIONS = {
    SessionState.CREATED: {SessionState.SEEDING, SessionState.FAILED},
    SessionState.SEEDING: {SessionState.DISPATCHING, SessionState.FAILED},
    SessionState.DISPATCHING: {SessionState.SWEEPING, SessionState.FAILED},
    SessionState.SWEEPING: {SessionState.COMPLETE, SessionState.FAILED},
    SessionState.COMPLETE: set(),
    SessionState.FAILED: set(),
}


@dataclass
class PassResult:
    mode: str
    state: SessionState
    started_at: datetime
    session: Optional[SessionSnapshot] = None
    outcomes: List[Outcome] = field(default_factory=list)
    sweep: Optional[SweepReport] = None
    owners: int = 0
    error: Optional[str] = None
    finished_at: Optional[datetime] = None

    @property
    def summary(self) -> PassSummary:
        return PassSummary.from_outcomes(self.outcomes, swept=self.sweep.count if self.sweep else 0,
                                         owners=self.owners)

    @property
    def ok(self) -> bool:
        return self.state == SessionState.COMPLETE

    def to_schema(self, with_outcomes: bool = True) -> PassOut:
        return PassOut(
            session=self.session,
            state=self.state.value,
            mode=self.mode,
            summary=self.summary,
            error=self.error,
            started_at=self.started_at,
            finished_at=self.finished_at,
            outcomes=self.outcomes if with_outcomes else [],
        )


class SessionController:
    def __init__(self, store: Store, source: SourceAdapter, settings: Optional[ReconcileSettings] = None,
                 logger: Optional[logging.Logger] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.store = store
        self.source = source
        self.settings = settings or ReconcileSettings()
        self.logger = logger or default_logger
        self.state = SessionState.CREATED
        self.history: List[SessionState] = [SessionState.CREATED]
        s = self.settings
        self.item_policy = RetryPolicy(s.retry_max_attempts, s.retry_delay, logger=self.logger, sleep=sleep)
        self.page_policy = RetryPolicy(s.retry_max_attempts, s.retry_delay, logger=self.logger, sleep=sleep)
        self.owner_executor = BatchExecutor(s.batch_cap, s.inter_batch_delay, logger=self.logger, sleep=sleep,
                                            on_error=self._owner_rejected, label="owners")
        self.item_executor = BatchExecutor(s.batch_cap, s.inter_batch_delay, logger=self.logger, sleep=sleep,
                                           on_error=self._item_rejected, label="listings")
        self.tracker: Optional[LivenessTracker] = None
        self.errored_ids: Set[str] = set()
        self.rejected_owners: Set[str] = set()

    def _transition(self, new: SessionState) -> None:
        if new not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"cannot go from {self.state.value} to {new.value}")
        self.logger.info("Session state %s -> %s", self.state.value, new.value)
        self.state = new
        self.history.append(new)

    def _owner_rejected(self, owner: OwnerRef, error: BaseException) -> List[Outcome]:
        # none of this owner's listings were checked, keep them away from the sweep
        self.rejected_owners.add(owner.id)
        return [Outcome(owner_id=owner.id, status="rejected", detail=str(error) or type(error).__name__)]

    def _item_rejected(self, item, error: BaseException) -> Outcome:
        outcome = rejected_outcome(item, error)
        if outcome.external_id:
            self.errored_ids.add(outcome.external_id)
        return outcome

    async def run(self) -> PassResult:
        if self.state != SessionState.CREATED:
            raise InvalidTransition(f"pass already ran and ended {self.state.value}")
        result = PassResult(mode=self.settings.mode, state=self.state, started_at=utcnow())
        self.logger.info("Starting %s pass", self.settings.mode)
        try:
            result.session = await self._fatal("could not create session", self.store.create_session())
            self.logger.info("Created session ID: %s", result.session.id)
            self.tracker = LivenessTracker(self.store, result.session,
                                           only_active=self.settings.only_active_entities, logger=self.logger)

            self._transition(SessionState.SEEDING)
            await self._fatal("could not seed markers", self.tracker.seed())

            self._transition(SessionState.DISPATCHING)
            owners = await self._fatal("could not list owners", self.source.list_known_owners())
            result.owners = len(owners)
            self.logger.info("Found %d owners to process", len(owners))
            per_owner = await self.owner_executor.run(
                owners, self.settings.owner_concurrency_limit, self._process_owner
            )
            for outcomes in per_owner:
                result.outcomes.extend(outcomes)

            self._transition(SessionState.SWEEPING)
            result.sweep = await self.tracker.sweep(exclude_ids=self.errored_ids,
                                                    exclude_owners=self.rejected_owners)
            for external_id in result.sweep.errors:
                result.outcomes.append(Outcome(external_id=external_id, status="error", detail="sweep failed"))

            self._transition(SessionState.COMPLETE)
        except InvalidTransition:
            raise
        except SessionFatalError as e:
            self.logger.error("Aborting %s session: %s", self.settings.mode, e)
            result.error = str(e)
            self._transition(SessionState.FAILED)
        except Exception as e:
            self.logger.exception("Error during %s session: %s", self.settings.mode, e)
            result.error = str(e) or type(e).__name__
            self._transition(SessionState.FAILED)
        result.state = self.state
        result.finished_at = utcnow()
        self._log_summary(result)
        return result

    async def _fatal(self, what: str, pending: Awaitable):
        try:
            return await pending
        except Exception as e:
            raise SessionFatalError(f"{what}: {e}") from e

    def _log_summary(self, result: PassResult) -> None:
        s = result.summary
        duration = result.finished_at - result.started_at
        total_ms = int(duration.total_seconds() * 1000)
        self.logger.info(
            "Processing complete: %d successful, %d marked inactive, %d swept, %d failed, %d rejected, %d skipped",
            s.success, s.deactivated, s.swept, s.error, s.rejected, s.skipped,
        )
        self.logger.info("Total duration: %dm %ds %dms", total_ms // 60000, (total_ms % 60000) // 1000, total_ms % 1000)
        if result.ok:
            self.logger.info("Session completed successfully")
        else:
            self.logger.error("Session failed: %s", result.error)

    async def _process_owner(self, owner: OwnerRef) -> List[Outcome]:
        outcomes: List[Outcome] = []
        tracked = await self.store.find_entities(owner_id=owner.id,
                                                 only_active=self.settings.only_active_entities)
        self.logger.info("Owner %s: %d tracked listings", owner.id, len(tracked))

        if self.settings.mode == "check":
            outcomes.extend(await self._check_entities(owner, tracked))
            return outcomes

        if not owner.source_url:
            self.logger.warning("Owner %s has no source url, checking listings one by one", owner.id)
            outcomes.append(Outcome(owner_id=owner.id, status="skipped", detail="no source url"))
            outcomes.extend(await self._check_entities(owner, tracked))
            return outcomes

        listing = await self.page_policy.attempt(
            lambda: self.source.enumerate_entities_for_owner(owner), key=f"owner {owner.id}"
        )
        if isinstance(listing, DefinitiveFailure):
            self.logger.error("Could not enumerate owner %s: %s", owner.id, listing.last_error)
            outcomes.append(Outcome(owner_id=owner.id, status="error", attempts=listing.attempts,
                                    detail=f"enumeration failed: {listing.last_error}"))
            outcomes.extend(await self._check_entities(owner, tracked))
            return outcomes

        enumerated = dedupe_ids(listing.value)
        await self.store.record_inventory(self.tracker.session_id, owner.id, len(enumerated))
        self.logger.info("Owner %s: %d listings enumerated", owner.id, len(enumerated))

        outcomes.extend(await self.item_executor.run(
            enumerated, self.settings.item_concurrency_limit, lambda eid: self._confirm_enumerated(owner, eid)
        ))
        enumerated_set = set(enumerated)
        missing = [e for e in tracked if e.external_id not in enumerated_set]
        if missing:
            self.logger.info("Owner %s: %d tracked listings not enumerated, checking individually",
                             owner.id, len(missing))
            outcomes.extend(await self._check_entities(owner, missing))
        return outcomes

    async def _check_entities(self, owner: OwnerRef, entities: List[EntitySnapshot]) -> List[Outcome]:
        if not entities:
            return []
        return await self.item_executor.run(
            entities, self.settings.item_concurrency_limit, lambda e: self._check_entity(owner, e)
        )

    async def _sighted(self, entity: EntitySnapshot) -> None:
        if not entity.active and self.settings.reactivate_on_sighting:
            await self.tracker.reactivate(entity.external_id)
        await self.tracker.mark_seen(entity.external_id)

    async def _confirm_enumerated(self, owner: OwnerRef, external_id: str) -> Outcome:
        """A listing id showed up on the owner's page."""
        try:
            entity = await self.store.get_entity(external_id)
            if entity is not None:
                await self._sighted(entity)
                return Outcome(external_id=external_id, owner_id=owner.id, status="success", attempts=1)

            self.logger.info("New listing %s, fetching details", external_id)
            fetched = await self.item_policy.attempt(
                lambda: self.source.fetch_entity_detail(external_id), key=external_id
            )
            if isinstance(fetched, DefinitiveFailure):
                return Outcome(external_id=external_id, owner_id=owner.id, status="skipped",
                               attempts=fetched.attempts, detail=f"new listing not fetched: {fetched.last_error}")
            await services.ingest_detail(self.store, fetched.value, owner.id)
            await self.tracker.mark_seen(external_id)
            return Outcome(external_id=external_id, owner_id=owner.id, status="success",
                           attempts=fetched.attempts, detail="new")
        except Exception as e:
            self.logger.exception("Error processing listing %s: %s", external_id, e)
            self.errored_ids.add(external_id)
            return Outcome(external_id=external_id, owner_id=owner.id, status="error", detail=str(e))

    async def _check_entity(self, owner: OwnerRef, entity: EntitySnapshot) -> Outcome:
        """Ask the source whether one tracked listing is still there."""
        external_id = entity.external_id
        try:
            self.logger.info("Checking availability for listing %s", external_id)
            checked = await self.item_policy.attempt(
                lambda: self.source.fetch_entity_detail(external_id), key=external_id
            )
            if isinstance(checked, Confirmed):
                await self._sighted(entity)
                return Outcome(external_id=external_id, owner_id=owner.id, status="success",
                               attempts=checked.attempts)
            updated = await self.tracker.deactivate_now(checked)
            if updated is None:
                return Outcome(external_id=external_id, owner_id=owner.id, status="skipped",
                               attempts=checked.attempts, detail="already inactive")
            return Outcome(external_id=external_id, owner_id=owner.id, status="deactivated",
                           attempts=checked.attempts, detail=checked.last_error)
        except Exception as e:
            self.logger.exception("Error checking listing %s: %s", external_id, e)
            self.errored_ids.add(external_id)
            return Outcome(external_id=external_id, owner_id=owner.id, status="error", detail=str(e))


async def run_pass(store: Store, source: SourceAdapter, settings: Optional[ReconcileSettings] = None,
                   logger: Optional[logging.Logger] = None) -> PassResult:
    return await SessionController(store, source, settings, logger=logger).run()
