"""
Session manager: owns the lifecycle of ingestion sessions.

A session moves OPEN -> STAGING -> TRANSFORMING -> VALIDATING -> PROMOTING
-> COMPLETED, or to FAILED from any non-terminal state. Per-record work of
each phase runs on a bounded thread pool; counts and outcomes are merged
under a per-session lock. Independent sessions share no lock.
"""

import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import timedelta
from typing import Any, Callable

from clm_integration.config.settings import Settings
from clm_integration.core.errors import (
    ClmError,
    IllegalSessionTransitionError,
    InfrastructureError,
    SessionNotFoundError,
)
from clm_integration.core.models import (
    EntityKind,
    IngestionSession,
    RecordOutcome,
    SessionStatus,
    StagedRecord,
    StagingStatus,
    ValidationResult,
)
from clm_integration.core.models.staged_record import utcnow
from clm_integration.observability.logger import get_logger, log_operation
from clm_integration.observability.metrics import (
    active_sessions,
    record_rejection,
    record_session_finished,
)
from clm_integration.utils.validation import (
    InputValidationError,
    validate_entity_kind,
    validate_records,
    validate_source_system,
)
from clm_integration.warehouse.repository import Repository

from .promotion import PromotionStage
from .staging import StagingStore
from .transform import TransformValidateStage

logger = get_logger(__name__)

StageFactory = Callable[[EntityKind], TransformValidateStage]
CompletionCallback = Callable[[IngestionSession], Any]


class SessionManager:
    """
    Drives ingestion sessions through staging, transform/validate and promotion.

    Rejections are per-record outcomes and never fail a session. An
    InfrastructureError fails the session, stops scheduling further
    records and is re-raised to the caller.
    """

    def __init__(
        self,
        repository: Repository,
        staging: StagingStore,
        promotion: PromotionStage,
        stage_factory: StageFactory | None = None,
        settings: Settings | None = None,
        on_complete: CompletionCallback | None = None,
    ):
        self.repository = repository
        self.staging = staging
        self.promotion = promotion
        self.settings = settings or Settings()
        self.stage_factory = stage_factory or (
            lambda kind: TransformValidateStage.from_settings(kind, self.settings.etl)
        )
        self.on_complete = on_complete

        self._guard = threading.Lock()
        self._sessions: dict[str, IngestionSession] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._started: dict[str, float] = {}
        self._finished: set[str] = set()
        self._running: dict[str, int] = {}
        self._stages: dict[EntityKind, TransformValidateStage] = {}

    # ---- public operations ----

    def open(self, source_system: str, entity_kind: "str | EntityKind") -> str:
        """
        Open a new session and return its id.

        Raises:
            InputValidationError: If source_system or entity_kind is invalid
            PersistenceError: If the session cannot be stored
        """
        source_system = validate_source_system(source_system)
        kind = validate_entity_kind(entity_kind)

        session = IngestionSession(
            session_id=uuid.uuid4().hex,
            source_system=source_system,
            entity_kind=kind,
        )
        self.repository.create_session(session)

        with self._guard:
            self._sessions[session.session_id] = session
            self._locks[session.session_id] = threading.RLock()
            self._started[session.session_id] = time.monotonic()
        active_sessions.labels(entity_kind=kind.value).inc()

        logger.info(
            "Ingestion session opened",
            extra={"session_id": session.session_id, "source_system": source_system, "entity_kind": kind.value},
        )
        return session.session_id

    def stage(self, session_id: str, records: list[dict[str, Any]]) -> list[StagedRecord]:
        """
        Stage a batch of raw records for an OPEN session.

        Raises:
            InputValidationError: If records is malformed or larger than etl.batch_size
            IllegalSessionTransitionError: If the session is not OPEN
            PersistenceError: If staging fails; the session is then FAILED
        """
        records = validate_records(records, max_records=self.settings.etl.batch_size)
        session = self._enter(session_id, SessionStatus.STAGING)
        try:
            with self._lock(session_id):
                session.advance_to(SessionStatus.STAGING)
                session.counts.received = len(records)

            try:
                self.repository.save_session(session)
                staged = self.staging.stage(session_id, session.entity_kind, records)
            except InfrastructureError as e:
                self._fail(session, f"Staging failed: {e}")
                raise

            with self._lock(session_id):
                session.counts.staged = len(staged)
            self._save(session)
        finally:
            self._leave(session)
        return staged

    def advance(self, session_id: str) -> IngestionSession:
        """
        Run the staged records through transform, validation and promotion.

        Returns:
            Snapshot of the session after its final transition

        Raises:
            IllegalSessionTransitionError: If the session is terminal or not staged
            InfrastructureError: If a collaborator fails; the session is then FAILED
        """
        session = self._enter(session_id, SessionStatus.TRANSFORMING)
        try:
            stage = self._stage_for(session.entity_kind)
            drafts: dict[int, Any] = {}
            with log_operation("Advancing ingestion session", logger=logger, session_id=session_id):
                try:
                    if self._transition(session, SessionStatus.TRANSFORMING):
                        pending = [r for r in self.staging.list(session_id) if r.status is StagingStatus.PENDING]
                        self._run_parallel(
                            session, pending, lambda r: self._transform_one(session, stage, r, drafts)
                        )

                    if self._transition(session, SessionStatus.VALIDATING):
                        transformed = [
                            r for r in self.staging.list(session_id) if r.status is StagingStatus.TRANSFORMED
                        ]
                        self._run_parallel(
                            session, transformed, lambda r: self._validate_one(session, stage, r, drafts)
                        )

                    if self._transition(session, SessionStatus.PROMOTING):
                        validated = [r for r in self.staging.list(session_id) if r.status is StagingStatus.VALIDATED]
                        self.promotion.plan(session_id, validated)
                        self._run_parallel(session, validated, lambda r: self._promote_one(session, r, drafts))

                    if not self._transition(session, SessionStatus.COMPLETED):
                        # Cancelled; records that were in flight have finished since
                        self._save(session)
                except InfrastructureError as e:
                    self._fail(session, str(e))
                    raise
                finally:
                    self.promotion.release(session_id)

            self._finish(session)
            return self.status(session_id)
        finally:
            self._leave(session)

    def fail(self, session_id: str, reason: str) -> IngestionSession:
        """
        Operator cancellation. In-flight records finish; no further records
        are scheduled.

        Raises:
            IllegalSessionTransitionError: If the session is already terminal
        """
        session = self._live(session_id, SessionStatus.FAILED)
        with self._lock(session_id):
            session.advance_to(SessionStatus.FAILED, error_message=reason)
        self._save(session)
        logger.warning("Ingestion session cancelled", extra={"session_id": session_id, "reason": reason})
        self._finish(session)
        snapshot = self.status(session_id)
        self._evict_if_idle(session_id)
        return snapshot

    def status(self, session_id: str) -> IngestionSession:
        """
        Read-only snapshot of a session.

        Live sessions are read from memory; finished ones from the repository.

        Raises:
            SessionNotFoundError: If the id is unknown
        """
        with self._guard:
            session = self._sessions.get(session_id)
            lock = self._locks.get(session_id)
        if session is not None and lock is not None:
            with lock:
                return session.model_copy(deep=True)

        stored = self.repository.get_session(session_id)
        if stored is None:
            raise SessionNotFoundError(session_id)
        return stored

    def purge_expired(self, retention_days: int | None = None) -> int:
        """
        Delete finished sessions and their staged records once they are older
        than the retention period.

        Args:
            retention_days: Days to keep; etl.staging_retention_days when None

        Returns:
            Number of sessions deleted

        Raises:
            InputValidationError: If retention_days is not a positive integer
        """
        if retention_days is None:
            retention_days = self.settings.etl.staging_retention_days
        if isinstance(retention_days, bool) or not isinstance(retention_days, int) or retention_days <= 0:
            raise InputValidationError("retention_days must be a positive integer")

        cutoff = utcnow() - timedelta(days=retention_days)
        deleted = self.repository.purge_sessions(cutoff)
        logger.info(
            "Expired ingestion sessions purged",
            extra={"retention_days": retention_days, "deleted": deleted},
        )
        return deleted

    # ---- per-record work ----

    def _transform_one(self, session: IngestionSession, stage: TransformValidateStage,
                       record: StagedRecord, drafts: dict[int, Any]) -> None:
        result = stage.transform(record)
        if result.is_ok:
            self.staging.update(record.with_status(StagingStatus.TRANSFORMED))
            with self._lock(session.session_id):
                drafts[record.sequence] = result.unwrap()
        else:
            self._reject(session, record, result.error)

    def _validate_one(self, session: IngestionSession, stage: TransformValidateStage,
                      record: StagedRecord, drafts: dict[int, Any]) -> None:
        with self._lock(session.session_id):
            draft = drafts.get(record.sequence)
        if draft is None:
            # Transformed by an earlier run; map it again
            result = stage.process(record)
        else:
            result = stage.validate(record, draft)

        if not result.is_ok:
            self._reject(session, record, result.error)
            return

        self.staging.update(record.with_status(StagingStatus.VALIDATED))
        with self._lock(session.session_id):
            drafts[record.sequence] = result.unwrap()
            session.counts.validated += 1

    def _promote_one(self, session: IngestionSession, record: StagedRecord, drafts: dict[int, Any]) -> None:
        with self._lock(session.session_id):
            draft = drafts.get(record.sequence)
        if draft is None:
            result = self._stage_for(session.entity_kind).process(record)
            if not result.is_ok:
                self._reject(session, record, result.error)
                return
            draft = result.unwrap()

        outcome = self.promotion.promote(session.session_id, record, draft)
        if not outcome.result.valid:
            self._reject(session, record, outcome.result)
            return

        self.staging.update(record.with_status(StagingStatus.PROMOTED))
        with self._lock(session.session_id):
            session.counts.promoted += 1
            session.add_outcome(RecordOutcome(
                sequence=record.sequence,
                natural_key=record.natural_key_string(),
                status=StagingStatus.PROMOTED,
                result=outcome.result,
                assigned_id=outcome.assigned_id,
            ))

    def _reject(self, session: IngestionSession, record: StagedRecord, error: ValidationResult) -> None:
        self.staging.update(record.with_status(StagingStatus.REJECTED, error))
        with self._lock(session.session_id):
            session.counts.failed += 1
            session.add_outcome(RecordOutcome(
                sequence=record.sequence,
                natural_key=record.natural_key_string(),
                status=StagingStatus.REJECTED,
                result=error,
            ))
        record_rejection(session.entity_kind.value, error.error_code, error.field_name)
        logger.info(
            "Record rejected",
            extra={
                "session_id": session.session_id,
                "sequence": record.sequence,
                "error_code": error.error_code,
                "field_name": error.field_name,
            },
        )

    # ---- scheduling ----

    def _run_parallel(self, session: IngestionSession, records: list[StagedRecord],
                      work: Callable[[StagedRecord], None]) -> None:
        """
        Run work for each record on the pool, in sequence order.

        Scheduling stops once a task raises or the session is failed;
        tasks already running are allowed to finish. The first error is
        re-raised.
        """
        if not records:
            return

        workers = self.settings.etl.parallel_consumers
        errors: list[BaseException] = []

        def collect(done: set[Future]) -> None:
            for future in done:
                error = future.exception()
                if error is not None:
                    errors.append(error)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"session-{session.session_id[:8]}") as pool:
            in_flight: set[Future] = set()
            for record in sorted(records, key=lambda r: r.sequence):
                if errors or self._cancelled(session):
                    break
                if len(in_flight) >= workers:
                    done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                    collect(done)
                    if errors or self._cancelled(session):
                        break
                in_flight.add(pool.submit(work, record))
            done, _ = wait(in_flight)
            collect(done)

        if errors:
            raise errors[0]

    # ---- session bookkeeping ----

    def _transition(self, session: IngestionSession, target: SessionStatus) -> bool:
        """Advance unless the session was cancelled meanwhile."""
        with self._lock(session.session_id):
            if self._cancelled(session):
                return False
            session.advance_to(target)
        self._save(session)
        logger.info(
            f"Session moved to {target.value}",
            extra={"session_id": session.session_id, "status": target.value, **session.counts.model_dump()},
        )
        return True

    def _fail(self, session: IngestionSession, message: str) -> None:
        with self._lock(session.session_id):
            if session.is_terminal():
                return
            session.advance_to(SessionStatus.FAILED, error_message=message)
        logger.error(
            "Ingestion session failed",
            extra={"session_id": session.session_id, "error_message": message},
        )
        try:
            self._save(session)
        except InfrastructureError as e:
            # The original fault is re-raised by the caller
            logger.error(
                "Could not persist failed session",
                extra={"session_id": session.session_id, "error_message": str(e)},
            )
        self._finish(session)

    def _finish(self, session: IngestionSession) -> None:
        with self._guard:
            if session.session_id in self._finished or not session.is_terminal():
                return
            self._finished.add(session.session_id)
            started = self._started.pop(session.session_id, time.monotonic())

        active_sessions.labels(entity_kind=session.entity_kind.value).dec()
        record_session_finished(session.source_system, session.status.value, time.monotonic() - started)
        logger.info("Ingestion session finished", extra=session.summary())

        if self.on_complete is not None:
            snapshot = self.status(session.session_id)
            try:
                self.on_complete(snapshot)
            except ClmError as e:
                # The session is already terminal; notification failures are reported only
                logger.error(
                    "Session completion callback failed",
                    extra={"session_id": session.session_id, "error_type": type(e).__name__, "error_message": str(e)},
                )

    def _save(self, session: IngestionSession) -> None:
        with self._lock(session.session_id):
            snapshot = session.model_copy(deep=True)
        self.repository.save_session(snapshot)

    def _cancelled(self, session: IngestionSession) -> bool:
        return session.status is SessionStatus.FAILED

    def _live(self, session_id: str, target: SessionStatus) -> IngestionSession:
        with self._guard:
            session = self._sessions.get(session_id)
        if session is None:
            self._not_live(session_id, target)
        return session

    def _enter(self, session_id: str, target: SessionStatus) -> IngestionSession:
        """Look up a live session and mark it busy so it is not evicted meanwhile."""
        with self._guard:
            session = self._sessions.get(session_id)
            if session is not None:
                self._running[session_id] = self._running.get(session_id, 0) + 1
        if session is None:
            self._not_live(session_id, target)
        return session

    def _leave(self, session: IngestionSession) -> None:
        with self._guard:
            remaining = self._running.get(session.session_id, 1) - 1
            if remaining > 0:
                self._running[session.session_id] = remaining
            else:
                self._running.pop(session.session_id, None)
        self._evict_if_idle(session.session_id)

    def _evict_if_idle(self, session_id: str) -> None:
        """Drop a finished session from memory; status() then reads the repository."""
        with self._guard:
            if session_id in self._running or session_id not in self._finished:
                return
            self._sessions.pop(session_id, None)
            self._locks.pop(session_id, None)
            self._started.pop(session_id, None)
            self._finished.discard(session_id)

    def _not_live(self, session_id: str, target: SessionStatus) -> None:
        stored = self.repository.get_session(session_id)
        if stored is not None and stored.is_terminal():
            raise IllegalSessionTransitionError(session_id, stored.status.value, target.value)
        raise SessionNotFoundError(session_id)

    def _lock(self, session_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(session_id)
        # Evicted sessions are no longer shared
        return lock if lock is not None else threading.RLock()

    def _stage_for(self, entity_kind: EntityKind) -> TransformValidateStage:
        with self._guard:
            stage = self._stages.get(entity_kind)
        if stage is None:
            stage = self.stage_factory(entity_kind)
            with self._guard:
                stage = self._stages.setdefault(entity_kind, stage)
        return stage
