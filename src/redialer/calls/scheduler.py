"""
Redial scheduler.

Each cycle selects due retry records, checks them against the attempt ledger
and the rate governor, dispatches the ones that pass and registers every
dispatched attempt so that its completion can be matched later.

Completions arrive as ``CompletionEvent`` messages from the webhook. They are
correlated through the pending-attempt registry, settle the ledger and move the
record to its next status. All work for one phone number, dispatch and
completion alike, runs under that number's lock; different numbers proceed in
parallel.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from redialer.calls.backoff import next_eligible_at
from redialer.calls.business_hours import BusinessHours
from redialer.calls.config import RedialPolicy
from redialer.calls.errors import DispatchTimeoutError, MalformedRecordError
from redialer.calls.governor import RateGovernor
from redialer.calls.ledger import AttemptLedger
from redialer.calls.registry import PendingAttempt, PendingAttemptRegistry
from redialer.crm.client import CrmClient, CrmError
from redialer.crm.status import crm_status_for
from redialer.prospects.models import (
    FROZEN_STATUSES,
    SELECTABLE_STATUSES,
    OutcomeEntry,
    ProspectRetryRecord,
    RecordStatus,
)
from redialer.prospects.repository import ProspectRecordRepository, RecordNotFoundError
from redialer.shared.locks import AsyncKeyedLock
from redialer.shared.logging import get_logger
from redialer.shared.phone import InvalidPhoneNumberError, normalize_phone
from redialer.telephony.events import CompletionEvent
from redialer.telephony.interface import (
    DispatchRequest,
    DispatchResponse,
    TelephonyProviderError,
    TransientProviderError,
    VoiceProvider,
)
from redialer.telephony.outcomes import OutcomeClass

logger = get_logger(__name__)

# Informational history markers. They carry no outcome class.
MARKER_QUARANTINED = "QUARANTINED"
MARKER_DISPATCHED = "DISPATCHED"
MARKER_EXTERNAL_ATTEMPT = "EXTERNAL_ATTEMPT"

DEAD_NUMBER_NOTE = "number out of service; removed from redialing"

# Records a pause may act on.
_PAUSABLE_STATUSES = SELECTABLE_STATUSES


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_attempt_id() -> str:
    return uuid.uuid4().hex


def _cycle_order(record: ProspectRetryRecord) -> tuple[datetime, str, str]:
    return (record.created_at, record.prospect_id, record.phone_number)


@dataclass(frozen=True)
class DispatchedAttempt:
    """One attempt dispatched during a cycle."""

    attempt_id: str
    prospect_id: str
    phone_number: str
    attempt_number: int
    dispatched_at: datetime
    next_eligible_at: datetime
    provider_call_id: str | None = None
    overlapped: bool = False


@dataclass
class CycleResult:
    """Tally of one redial cycle."""

    started_at: datetime
    candidates: int = 0
    dispatched: int = 0
    skipped_not_due: int = 0
    skipped_safety: int = 0
    errored: int = 0
    daily_cap_reached: int = 0
    max_attempts_reached: int = 0
    quarantined: int = 0
    swept: int = 0
    disabled: bool = False
    outside_business_hours: bool = False
    attempts: list[DispatchedAttempt] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "candidates": self.candidates,
            "dispatched": self.dispatched,
            "skipped_not_due": self.skipped_not_due,
            "skipped_safety": self.skipped_safety,
            "errored": self.errored,
            "daily_cap_reached": self.daily_cap_reached,
            "max_attempts_reached": self.max_attempts_reached,
            "quarantined": self.quarantined,
            "swept": self.swept,
        }


@dataclass(frozen=True)
class CompletionResult:
    """What handling one completion event did."""

    attempt_id: str
    correlated: bool
    applied: bool
    duplicate: bool = False
    informational: bool = False
    prospect_id: str | None = None
    phone_number: str | None = None
    status: RecordStatus | None = None


class RedialScheduler:
    """Drives redial cycles and applies attempt completions."""

    def __init__(
        self,
        repository: ProspectRecordRepository,
        provider: VoiceProvider,
        ledger: AttemptLedger,
        governor: RateGovernor,
        registry: PendingAttemptRegistry,
        policy: RedialPolicy | None = None,
        business_hours: BusinessHours | None = None,
        crm: CrmClient | None = None,
        callback_url: str = "",
        clock: Callable[[], datetime] = _utc_now,
        attempt_id_factory: Callable[[], str] = _new_attempt_id,
        retry_wait: wait_base | None = None,
    ) -> None:
        """Wire the scheduler to its collaborators.

        Args:
            repository: Retry record storage.
            provider: Voice provider used to dispatch attempts.
            ledger: Shared per-number attempt ledger.
            governor: Global and per-number rate limiter.
            registry: Attempts dispatched and not yet completed.
            policy: Redial policy; defaults are read from the environment.
            business_hours: Calling window; defaults are read from the environment.
            crm: Optional CRM client that receives every applied outcome.
            callback_url: Where the provider posts completions.
            clock: Source of "now" when a caller does not pass one.
            attempt_id_factory: Generates attempt ids.
            retry_wait: tenacity wait strategy between dispatch retries.
        """
        self._repository = repository
        self._provider = provider
        self._ledger = ledger
        self._governor = governor
        self._registry = registry
        self._policy = policy or RedialPolicy()
        self._business_hours = business_hours or BusinessHours()
        self._crm = crm
        self._callback_url = callback_url
        self._clock = clock
        self._attempt_id_factory = attempt_id_factory
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, max=5)
        self._phone_locks = AsyncKeyedLock()
        self._last_sweep: datetime | None = None
        self._last_purge_day: date | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def policy(self) -> RedialPolicy:
        return self._policy

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------ #
    # Cycle
    # ------------------------------------------------------------------ #

    async def run_cycle(self, now: datetime | None = None) -> CycleResult:
        """Run one redial cycle.

        Records are considered in a stable order (origination time, prospect
        id, phone number). Records sharing a phone number are processed one
        after another under that number's lock.
        """
        now = now or self._clock()
        result = CycleResult(started_at=now)
        result.swept = await self._maybe_sweep(now)

        if not self._policy.enabled:
            result.disabled = True
            logger.info("Redial disabled; cycle skipped")
            return result
        if not self._business_hours.is_open(now):
            result.outside_business_hours = True
            logger.info("Outside business hours; cycle skipped", extra={"now": now.isoformat()})
            return result

        candidates = await self._repository.list_candidates(
            SELECTABLE_STATUSES,
            self._window_start(now),
        )
        result.candidates = len(candidates)

        groups: dict[str, list[ProspectRetryRecord]] = {}
        for record in sorted(candidates, key=_cycle_order):
            groups.setdefault(self._lock_key(record.phone_number), []).append(record)

        await asyncio.gather(
            *(self._process_group(key, records, now, result) for key, records in groups.items())
        )

        logger.info("Redial cycle finished", extra=result.summary())
        return result

    def _window_start(self, now: datetime) -> datetime:
        today = self._ledger.local_day(now)
        first_day = today - timedelta(days=max(self._policy.processing_window_days, 1) - 1)
        return datetime.combine(first_day, time.min, tzinfo=self._ledger.timezone)

    @staticmethod
    def _lock_key(phone: str) -> str:
        try:
            return normalize_phone(phone)
        except InvalidPhoneNumberError:
            return phone

    async def _process_group(
        self,
        key: str,
        records: list[ProspectRetryRecord],
        now: datetime,
        result: CycleResult,
    ) -> None:
        async with self._phone_locks.hold(key):
            for record in records:
                try:
                    await self._process_record(record, now, result)
                except Exception:
                    result.errored += 1
                    logger.exception(
                        "Failed to process retry record",
                        extra={
                            "prospect_id": record.prospect_id,
                            "phone_number": record.phone_number,
                        },
                    )

    async def _process_record(
        self,
        snapshot: ProspectRetryRecord,
        now: datetime,
        result: CycleResult,
    ) -> None:
        # Re-read under the lock: a completion or operator action may have moved it.
        record = await self._repository.get(snapshot.prospect_id, snapshot.phone_number)
        if record is None or record.status not in SELECTABLE_STATUSES:
            return
        changed = record.roll_day(self._ledger.local_day(now))

        try:
            phone = self._validate(record)
        except MalformedRecordError as exc:
            await self._quarantine(record, exc.reason, now)
            result.quarantined += 1
            return

        if record.phone_number != phone:
            rekeyed = await self._rekey(record, phone, now)
            if rekeyed is None:
                result.quarantined += 1
                return
            record = rekeyed
            changed = False

        count_today = self._ledger.count_today(phone, now)
        if max(record.attempt_count, count_today) >= self._policy.max_attempts:
            await self._transition(record, RecordStatus.MAX_ATTEMPTS_REACHED, now)
            result.max_attempts_reached += 1
            return

        if count_today >= self._policy.max_attempts_per_day:
            if record.status != RecordStatus.DAILY_CAP_REACHED:
                await self._transition(record, RecordStatus.DAILY_CAP_REACHED, now)
            elif changed:
                await self._save(record, now)
            result.daily_cap_reached += 1
            return

        if record.status == RecordStatus.DAILY_CAP_REACHED:
            record.status = RecordStatus.PENDING
            changed = True

        if record.next_eligible_at is not None and record.next_eligible_at > now:
            if changed:
                await self._save(record, now)
            result.skipped_not_due += 1
            return

        blocked = self._safety_block(phone, now)
        if blocked is not None:
            record.next_eligible_at = now + timedelta(minutes=self._policy.retry_delta_minutes)
            await self._save(record, now)
            result.skipped_safety += 1
            logger.info(
                "Dispatch deferred",
                extra={
                    "prospect_id": record.prospect_id,
                    "phone_number": phone,
                    "reason": blocked,
                    "next_eligible_at": record.next_eligible_at.isoformat(),
                },
            )
            return

        attempt_id = self._attempt_id_factory()
        try:
            response = await self._dispatch(self._build_request(record, phone, attempt_id))
        except (TelephonyProviderError, DispatchTimeoutError) as exc:
            if changed:
                await self._save(record, now)
            result.errored += 1
            logger.warning(
                "Dispatch failed; record stays due",
                extra={
                    "attempt_id": attempt_id,
                    "prospect_id": record.prospect_id,
                    "phone_number": phone,
                    "error": str(exc),
                    "error_code": exc.error_code,
                },
            )
            return

        attempt = self._record_dispatch(record, phone, attempt_id, now, response)
        await self._save(record, now)
        result.dispatched += 1
        result.attempts.append(attempt)

    def _validate(self, record: ProspectRetryRecord) -> str:
        """Return the canonical phone number or raise ``MalformedRecordError``."""
        if not record.prospect_id:
            raise MalformedRecordError("missing prospect id")
        if not record.list_id:
            raise MalformedRecordError("missing list id")
        try:
            return normalize_phone(record.phone_number)
        except InvalidPhoneNumberError as exc:
            raise MalformedRecordError(
                f"invalid phone number {record.phone_number!r}",
                details={"phone_number": record.phone_number},
            ) from exc

    async def _rekey(
        self,
        record: ProspectRetryRecord,
        phone: str,
        now: datetime,
    ) -> ProspectRetryRecord | None:
        """Move a record stored under a raw phone number to its canonical key.

        Completions, the ledger and the registry all address records by the
        canonical number. Returns None when a record already exists under that
        key; the raw copy is quarantined as a duplicate instead.
        """
        raw = record.phone_number
        if await self._repository.get(record.prospect_id, phone) is not None:
            await self._quarantine(record, f"duplicate of record on {phone}", now)
            return None

        rekeyed = record.model_copy(update={"phone_number": phone})
        await self._save(rekeyed, now)
        await self._repository.delete(record.prospect_id, raw)
        logger.info(
            "Retry record moved to canonical phone number",
            extra={"prospect_id": record.prospect_id, "from_phone": raw, "phone_number": phone},
        )
        return rekeyed

    def _safety_block(self, phone: str, now: datetime) -> str | None:
        if self._governor.too_soon_for_number(phone, now):
            return "too_soon_for_number"
        if self._ledger.is_engaged(phone, now):
            return "number_engaged"
        # Last, so a refused record does not spend a global slot.
        if not self._governor.try_acquire(now):
            return "rate_limited"
        return None

    def _build_request(
        self,
        record: ProspectRetryRecord,
        phone: str,
        attempt_id: str,
    ) -> DispatchRequest:
        return DispatchRequest(
            attempt_id=attempt_id,
            phone_number=phone,
            prospect_id=record.prospect_id,
            callback_url=self._callback_url,
            list_id=record.list_id,
            first_name=record.first_name,
            last_name=record.last_name,
            metadata={"attempt_number": str(record.attempt_count + 1)},
        )

    async def _dispatch(self, request: DispatchRequest) -> DispatchResponse:
        """Dispatch with a bounded timeout, retrying transient provider errors.

        Raises:
            DispatchTimeoutError: the provider did not answer in time (not retried).
            TelephonyProviderError: rejected, or still failing after the retries.
        """
        timeout = self._policy.dispatch_timeout_seconds
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._policy.dispatch_retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(TransientProviderError),
            reraise=True,
        ):
            with attempt:
                try:
                    return await asyncio.wait_for(self._provider.dispatch(request), timeout=timeout)
                except asyncio.TimeoutError as exc:
                    raise DispatchTimeoutError(
                        f"Dispatch not acknowledged within {timeout}s",
                        error_code="DISPATCH_TIMEOUT",
                        details={"attempt_id": request.attempt_id},
                    ) from exc
        raise DispatchTimeoutError("Dispatch retries exhausted")  # pragma: no cover

    def _record_dispatch(
        self,
        record: ProspectRetryRecord,
        phone: str,
        attempt_id: str,
        now: datetime,
        response: DispatchResponse,
    ) -> DispatchedAttempt:
        self._registry.register(attempt_id, record.prospect_id, phone, now)
        overlapped = self._ledger.record_attempt_start(phone, attempt_id, now)
        self._governor.record_attempt(phone, now)

        record.attempt_count += 1
        record.attempts_today += 1
        record.last_attempt_date = self._ledger.local_day(now)
        record.last_attempt_at = now
        record.last_attempt_id = attempt_id
        record.status = RecordStatus.PENDING
        record.next_eligible_at = next_eligible_at(
            now,
            record.attempt_count,
            self._policy.backoff_minutes,
            self._policy.backoff_floor_minutes,
        )
        record.append_outcome(
            OutcomeEntry(
                attempt_id=attempt_id,
                outcome=MARKER_DISPATCHED,
                recorded_at=now,
                informational=True,
                note="overlapped an engaged attempt on this number" if overlapped else None,
                metadata={
                    "attempt_number": record.attempt_count,
                    "provider_call_id": response.provider_call_id,
                    "overlapped": overlapped,
                },
            )
        )

        logger.info(
            "Attempt dispatched",
            extra={
                "attempt_id": attempt_id,
                "prospect_id": record.prospect_id,
                "phone_number": phone,
                "attempt_number": record.attempt_count,
                "provider_call_id": response.provider_call_id,
                "next_eligible_at": record.next_eligible_at.isoformat(),
            },
        )
        return DispatchedAttempt(
            attempt_id=attempt_id,
            prospect_id=record.prospect_id,
            phone_number=phone,
            attempt_number=record.attempt_count,
            dispatched_at=now,
            next_eligible_at=record.next_eligible_at,
            provider_call_id=response.provider_call_id,
            overlapped=overlapped,
        )

    async def _quarantine(self, record: ProspectRetryRecord, reason: str, now: datetime) -> None:
        record.status = RecordStatus.QUARANTINED
        record.append_outcome(
            OutcomeEntry(outcome=MARKER_QUARANTINED, recorded_at=now, note=reason)
        )
        await self._save(record, now)
        logger.warning(
            "Retry record quarantined",
            extra={
                "prospect_id": record.prospect_id,
                "phone_number": record.phone_number,
                "reason": reason,
            },
        )

    async def _transition(
        self,
        record: ProspectRetryRecord,
        status: RecordStatus,
        now: datetime,
    ) -> None:
        previous = record.status
        record.status = status
        await self._save(record, now)
        logger.info(
            "Retry record status changed",
            extra={
                "prospect_id": record.prospect_id,
                "phone_number": record.phone_number,
                "from_status": previous.value,
                "to_status": status.value,
                "attempt_count": record.attempt_count,
            },
        )

    async def _save(self, record: ProspectRetryRecord, now: datetime) -> None:
        record.updated_at = now
        await self._repository.save(record)

    # ------------------------------------------------------------------ #
    # Completions
    # ------------------------------------------------------------------ #

    async def handle_completion(self, event: CompletionEvent) -> CompletionResult:
        """Apply a completion event.

        Safe to call more than once for the same attempt: a repeated event is
        recognized from the outcome history and ignored.
        """
        try:
            event_phone: str | None = normalize_phone(event.phone_number)
        except InvalidPhoneNumberError:
            event_phone = None

        pending = self._registry.get(event.attempt_id)
        key = pending.phone_number if pending is not None else (event_phone or event.phone_number)

        async with self._phone_locks.hold(key):
            entry = self._registry.resolve(event.attempt_id)
            if entry is not None:
                return await self._complete_known(entry, event, event_phone)
            return await self._complete_unknown(event, event_phone)

    async def _complete_known(
        self,
        entry: PendingAttempt,
        event: CompletionEvent,
        event_phone: str | None,
    ) -> CompletionResult:
        if event_phone is not None and event_phone != entry.phone_number:
            logger.warning(
                "Completion phone differs from dispatched phone",
                extra={
                    "attempt_id": entry.attempt_id,
                    "dispatched_phone": entry.phone_number,
                    "reported_phone": event_phone,
                },
            )
        self._ledger.record_attempt_settle(
            entry.phone_number,
            entry.attempt_id,
            event.settled_at,
            transferred=event.transferred,
        )
        record = await self._repository.get(entry.prospect_id, entry.phone_number)
        if record is None:
            logger.warning(
                "Completion for a record that no longer exists",
                extra={"attempt_id": entry.attempt_id, "prospect_id": entry.prospect_id},
            )
            return CompletionResult(
                attempt_id=event.attempt_id,
                correlated=True,
                applied=False,
                prospect_id=entry.prospect_id,
                phone_number=entry.phone_number,
            )
        return await self._apply_completion(record, event, correlated=True)

    async def _complete_unknown(
        self,
        event: CompletionEvent,
        event_phone: str | None,
    ) -> CompletionResult:
        logger.info(
            "Completion for an attempt not pending",
            extra={"attempt_id": event.attempt_id, "phone_number": event.phone_number},
        )
        if event_phone is None:
            logger.warning(
                "Uncorrelated completion has no usable phone number",
                extra={"attempt_id": event.attempt_id, "phone_number": event.phone_number},
            )
            return CompletionResult(attempt_id=event.attempt_id, correlated=False, applied=False)

        settled = self._ledger.record_attempt_settle(
            event_phone,
            event.attempt_id,
            event.settled_at,
            transferred=event.transferred,
        )
        if not settled:
            self._ledger.close_open_attempts(
                event_phone,
                event.settled_at,
                transferred=event.transferred,
                exclude=self._registry,
            )

        record = await self._find_record_for_attempt(event_phone, event.attempt_id)
        if record is None:
            return CompletionResult(
                attempt_id=event.attempt_id,
                correlated=False,
                applied=False,
                phone_number=event_phone,
            )
        return await self._apply_completion(record, event, correlated=False)

    async def _find_record_for_attempt(
        self,
        phone: str,
        attempt_id: str,
    ) -> ProspectRetryRecord | None:
        records = await self._repository.find_by_phone(phone)
        for record in records:
            if record.last_attempt_id == attempt_id:
                return record
        for record in records:
            if any(e.attempt_id == attempt_id for e in record.outcome_history):
                return record
        return None

    async def _apply_completion(
        self,
        record: ProspectRetryRecord,
        event: CompletionEvent,
        correlated: bool,
    ) -> CompletionResult:
        if record.has_outcome_for(event.attempt_id):
            logger.info(
                "Duplicate completion ignored",
                extra={"attempt_id": event.attempt_id, "prospect_id": record.prospect_id},
            )
            return CompletionResult(
                attempt_id=event.attempt_id,
                correlated=correlated,
                applied=False,
                duplicate=True,
                prospect_id=record.prospect_id,
                phone_number=record.phone_number,
                status=record.status,
            )

        crm_status = crm_status_for(event.outcome)
        # An older attempt finishing after a newer one was dispatched only adds history.
        informational = record.last_attempt_id is not None and record.last_attempt_id != event.attempt_id
        record.append_outcome(
            OutcomeEntry(
                attempt_id=event.attempt_id,
                outcome=event.outcome.value,
                outcome_class=event.outcome_class.value,
                crm_status=crm_status,
                recorded_at=event.settled_at,
                informational=informational,
                note=DEAD_NUMBER_NOTE if event.outcome_class == OutcomeClass.DEAD_NUMBER else None,
                metadata={
                    "raw_outcome": event.raw_outcome,
                    "provider_call_id": event.provider_call_id,
                    "transferred": event.transferred,
                },
            )
        )
        if not informational:
            record.last_outcome = event.outcome.value
            if record.status not in FROZEN_STATUSES:
                self._apply_classification(record, event)

        await self._save(record, self._clock())
        logger.info(
            "Completion applied",
            extra={
                "attempt_id": event.attempt_id,
                "prospect_id": record.prospect_id,
                "outcome": event.outcome.value,
                "outcome_class": event.outcome_class.value,
                "status": record.status.value,
                "informational": informational,
                "correlated": correlated,
            },
        )

        if not informational:
            await self._report_to_crm(record, crm_status, event)
        if event.outcome_class == OutcomeClass.DEAD_NUMBER:
            await self._retire_number(record.phone_number, event)

        return CompletionResult(
            attempt_id=event.attempt_id,
            correlated=correlated,
            applied=True,
            informational=informational,
            prospect_id=record.prospect_id,
            phone_number=record.phone_number,
            status=record.status,
        )

    def _apply_classification(self, record: ProspectRetryRecord, event: CompletionEvent) -> None:
        if event.outcome_class == OutcomeClass.QUALIFYING_TERMINAL:
            record.status = RecordStatus.COMPLETED
            record.next_eligible_at = None
            return
        if event.outcome_class == OutcomeClass.DEAD_NUMBER:
            record.status = RecordStatus.BAD_NUMBER
            record.next_eligible_at = None
            return
        if record.attempt_count >= self._policy.max_attempts:
            record.status = RecordStatus.MAX_ATTEMPTS_REACHED
            return

        base = record.last_attempt_at or event.settled_at
        due = next_eligible_at(
            base,
            max(record.attempt_count, 1),
            self._policy.backoff_minutes,
            self._policy.backoff_floor_minutes,
        )
        if event.outcome_class == OutcomeClass.HARD_FAILURE:
            record.status = RecordStatus.PENDING
            record.next_eligible_at = max(due, self._next_local_midnight(event.settled_at))
        elif event.callback_at is not None:
            record.status = RecordStatus.RESCHEDULED
            record.next_eligible_at = max(
                event.callback_at,
                event.settled_at + timedelta(minutes=self._policy.backoff_floor_minutes),
            )
        else:
            record.status = RecordStatus.PENDING
            record.next_eligible_at = due

    def _next_local_midnight(self, t: datetime) -> datetime:
        tomorrow = self._ledger.local_day(t) + timedelta(days=1)
        return datetime.combine(tomorrow, time.min, tzinfo=self._ledger.timezone)

    async def _retire_number(self, phone_number: str, event: CompletionEvent) -> None:
        """Stop redialing every record still queued on a number that is out of service."""
        now = self._clock()
        for record in await self._repository.find_by_phone(phone_number):
            if record.status not in SELECTABLE_STATUSES:
                continue
            record.next_eligible_at = None
            record.append_outcome(
                OutcomeEntry(
                    outcome=event.outcome.value,
                    outcome_class=event.outcome_class.value,
                    recorded_at=event.settled_at,
                    informational=True,
                    note=f"{DEAD_NUMBER_NOTE} (attempt {event.attempt_id})",
                )
            )
            await self._transition(record, RecordStatus.BAD_NUMBER, now)

    async def _report_to_crm(
        self,
        record: ProspectRetryRecord,
        crm_status: str,
        event: CompletionEvent,
    ) -> None:
        if self._crm is None or not self._crm.enabled:
            return
        try:
            await self._crm.log_outcome(
                prospect_id=record.prospect_id,
                phone_number=record.phone_number,
                status=crm_status,
                list_id=record.list_id,
                notes=event.raw_outcome,
            )
        except CrmError as exc:
            logger.warning(
                "CRM outcome update failed",
                extra={
                    "prospect_id": record.prospect_id,
                    "crm_status": crm_status,
                    "error": str(exc),
                    "error_code": exc.error_code,
                },
            )

    # ------------------------------------------------------------------ #
    # Ledger maintenance
    # ------------------------------------------------------------------ #

    async def record_external_attempt(
        self,
        phone: str,
        attempt_id: str,
        t: datetime,
        source: str = "external",
    ) -> int:
        """Count an attempt placed outside this scheduler.

        The attempt occupies the number in the ledger and is folded into every
        retry record for that number. Returns the number of records updated.

        Raises:
            InvalidPhoneNumberError: ``phone`` cannot be normalized.
        """
        key = normalize_phone(phone)
        async with self._phone_locks.hold(key):
            overlapped = self._ledger.record_attempt_start(key, attempt_id, t, external=True)
            self._governor.record_attempt(key, t)
            today = self._ledger.local_day(t)

            updated = 0
            for record in await self._repository.find_by_phone(key):
                if any(e.attempt_id == attempt_id for e in record.outcome_history):
                    continue
                record.roll_day(today)
                record.attempt_count += 1
                if record.last_attempt_date is None or record.last_attempt_date <= today:
                    record.attempts_today += 1
                    record.last_attempt_date = today
                if record.last_attempt_at is None or record.last_attempt_at < t:
                    record.last_attempt_at = t
                if record.status in SELECTABLE_STATUSES:
                    due = next_eligible_at(
                        t,
                        record.attempt_count,
                        self._policy.backoff_minutes,
                        self._policy.backoff_floor_minutes,
                    )
                    if record.next_eligible_at is None or record.next_eligible_at < due:
                        record.next_eligible_at = due
                record.append_outcome(
                    OutcomeEntry(
                        attempt_id=attempt_id,
                        outcome=MARKER_EXTERNAL_ATTEMPT,
                        recorded_at=t,
                        informational=True,
                        note=source,
                    )
                )
                await self._save(record, t)
                updated += 1

        logger.info(
            "External attempt recorded",
            extra={
                "attempt_id": attempt_id,
                "phone_number": key,
                "source": source,
                "records_updated": updated,
                "overlapped": overlapped,
            },
        )
        return updated

    async def sweep_stale(self, now: datetime | None = None) -> list[PendingAttempt]:
        """Abandon pending attempts that never reported back."""
        now = now or self._clock()
        stale = self._registry.sweep_stale(
            now,
            timedelta(minutes=self._policy.stale_attempt_minutes),
        )
        for entry in stale:
            self._ledger.record_attempt_abandoned(entry.phone_number, entry.attempt_id, now)
        self._ledger.prune(now)
        self._governor.prune(now)
        self._last_sweep = now
        return stale

    async def _maybe_sweep(self, now: datetime) -> int:
        interval = timedelta(minutes=self._policy.sweep_interval_minutes)
        if self._last_sweep is not None and now - self._last_sweep < interval:
            return 0
        return len(await self.sweep_stale(now))

    async def restore_ledger(self, now: datetime | None = None) -> int:
        """Seed today's ledger from persisted history after a restart.

        Every dispatched or external attempt recorded today is replayed as a
        closed attempt; in-flight state is not recoverable. An attempt folded
        into several records is restored once. Returns the number restored.
        """
        now = now or self._clock()
        today = self._ledger.local_day(now)
        records = await self._repository.list_candidates(list(RecordStatus), self._window_start(now))
        seen: set[tuple[str, str]] = set()
        for record in records:
            if record.last_attempt_date != today:
                continue
            try:
                phone = normalize_phone(record.phone_number)
            except InvalidPhoneNumberError:
                continue
            for entry in record.outcome_history:
                if entry.outcome not in (MARKER_DISPATCHED, MARKER_EXTERNAL_ATTEMPT):
                    continue
                if entry.attempt_id is None or self._ledger.local_day(entry.recorded_at) != today:
                    continue
                if (phone, entry.attempt_id) in seen:
                    continue
                seen.add((phone, entry.attempt_id))
                self._ledger.restore_attempt(phone, entry.attempt_id, entry.recorded_at)
                self._governor.record_attempt(phone, entry.recorded_at)
        logger.info("Attempt ledger restored", extra={"attempts": len(seen), "day": today.isoformat()})
        return len(seen)

    # ------------------------------------------------------------------ #
    # Operator controls
    # ------------------------------------------------------------------ #

    async def enqueue(
        self,
        prospect_id: str,
        phone_number: str,
        list_id: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        now: datetime | None = None,
    ) -> ProspectRetryRecord:
        """Create the retry record for a prospect, or return the existing one.

        Records that cannot be dialed are stored quarantined.
        """
        now = now or self._clock()
        reason: str | None = None
        try:
            phone = normalize_phone(phone_number)
        except InvalidPhoneNumberError:
            phone = (phone_number or "").strip()
            reason = f"invalid phone number {phone_number!r}"
        if not list_id:
            reason = reason or "missing list id"

        async with self._phone_locks.hold(phone):
            existing = await self._repository.get(prospect_id, phone)
            if existing is not None:
                logger.info(
                    "Retry record already exists",
                    extra={"prospect_id": prospect_id, "phone_number": phone},
                )
                return existing

            record = ProspectRetryRecord(
                prospect_id=prospect_id,
                phone_number=phone,
                list_id=list_id,
                first_name=first_name,
                last_name=last_name,
                status=RecordStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            if reason is not None:
                await self._quarantine(record, reason, now)
            else:
                await self._save(record, now)
                logger.info(
                    "Retry record enqueued",
                    extra={"prospect_id": prospect_id, "phone_number": phone, "list_id": list_id},
                )
            return record

    async def pause(self, prospect_id: str, phone_number: str) -> ProspectRetryRecord:
        """Stop scheduling a record until it is resumed.

        Raises:
            RecordNotFoundError: no such record.
        """
        async with self._phone_locks.hold(self._lock_key(phone_number)):
            record = await self._require(prospect_id, phone_number)
            if record.status in _PAUSABLE_STATUSES:
                await self._transition(record, RecordStatus.PAUSED, self._clock())
            return record

    async def resume(self, prospect_id: str, phone_number: str) -> ProspectRetryRecord:
        """Put a paused record back in rotation.

        Raises:
            RecordNotFoundError: no such record.
        """
        async with self._phone_locks.hold(self._lock_key(phone_number)):
            record = await self._require(prospect_id, phone_number)
            if record.status == RecordStatus.PAUSED:
                await self._transition(record, RecordStatus.PENDING, self._clock())
            return record

    async def remove(self, prospect_id: str, phone_number: str) -> None:
        """Delete a retry record.

        Raises:
            RecordNotFoundError: no such record.
        """
        async with self._phone_locks.hold(self._lock_key(phone_number)):
            if not await self._repository.delete(prospect_id, self._lock_key(phone_number)):
                raise RecordNotFoundError(prospect_id, phone_number)
        logger.info(
            "Retry record removed",
            extra={"prospect_id": prospect_id, "phone_number": phone_number},
        )

    async def _require(self, prospect_id: str, phone_number: str) -> ProspectRetryRecord:
        record = await self._repository.get(prospect_id, self._lock_key(phone_number))
        if record is None:
            raise RecordNotFoundError(prospect_id, phone_number)
        return record

    async def stats(self) -> dict[str, Any]:
        return {
            "records_by_status": await self._repository.count_by_status(),
            "pending_attempts": len(self._registry),
            "ledger_numbers": self._ledger.tracked_numbers(),
            "open_attempts": self._ledger.open_attempts(),
            "running": self.running,
        }

    # ------------------------------------------------------------------ #
    # Driver
    # ------------------------------------------------------------------ #

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete records originated before the retention horizon."""
        now = now or self._clock()
        cutoff = now - timedelta(days=self._policy.retention_days)
        removed = await self._repository.purge_created_before(cutoff)
        logger.info(
            "Expired retry records purged",
            extra={"cutoff": cutoff.isoformat(), "removed": removed},
        )
        return removed

    async def _maybe_purge(self, now: datetime) -> int:
        today = self._ledger.local_day(now)
        if self._last_purge_day == today:
            return 0
        self._last_purge_day = today
        return await self.purge_expired(now)

    async def start(self, interval_seconds: float) -> None:
        """Run cycles in the background every ``interval_seconds``."""
        if self.running:
            logger.warning("Redial driver already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(interval_seconds))
        logger.info("Redial driver started", extra={"interval_seconds": interval_seconds})

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Redial driver stopped")

    async def _run_loop(self, interval_seconds: float) -> None:
        while self._running:
            try:
                now = self._clock()
                await self.run_cycle(now)
                await self._maybe_purge(now)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Redial cycle failed")
            await asyncio.sleep(interval_seconds)
