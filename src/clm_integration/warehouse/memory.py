"""
In-memory repository for tests and dry runs.

All state lives in dictionaries guarded by one re-entrant lock, which also
makes ledger_check_and_mark a single atomic step.
"""

import itertools
import threading
from datetime import datetime, timedelta

from clm_integration.core.errors import ConflictError
from clm_integration.core.models import (
    CheckResult,
    ContractDraft,
    CustomerDraft,
    IdempotencyRecord,
    IngestionSession,
    IntegrationMessage,
    LedgerOutcome,
    StagedRecord,
)
from clm_integration.core.models.staged_record import utcnow
from clm_integration.core.state_machine import ContractStatus

from .repository import Repository


class InMemoryRepository(Repository):
    """Thread-safe Repository backed by dictionaries."""

    def __init__(self):
        self._lock = threading.RLock()
        self._sessions: dict[str, IngestionSession] = {}
        self._staged: dict[str, dict[int, StagedRecord]] = {}
        self._contracts: dict[int, ContractDraft] = {}
        self._contract_keys: dict[tuple[str, str], int] = {}
        self._customers: dict[int, CustomerDraft] = {}
        self._customer_keys: dict[tuple[str, str], int] = {}
        self._ledger: dict[str, IdempotencyRecord] = {}
        self.dead_letters: list[tuple[IntegrationMessage, str]] = []
        self._staged_ids = itertools.count(1)
        self._contract_ids = itertools.count(1)
        self._customer_ids = itertools.count(1)

    # ---- ingestion sessions ----

    def create_session(self, session: IngestionSession) -> None:
        with self._lock:
            if session.session_id in self._sessions:
                raise ConflictError(f"Session already exists: {session.session_id}")
            self._sessions[session.session_id] = session.model_copy(deep=True)
            self._staged[session.session_id] = {}

    def save_session(self, session: IngestionSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session.model_copy(deep=True)

    def get_session(self, session_id: str) -> IngestionSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def purge_sessions(self, completed_before: datetime) -> int:
        with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if session.is_terminal() and session.completed_at is not None
                and session.completed_at < completed_before
            ]
            for session_id in expired:
                del self._sessions[session_id]
                self._staged.pop(session_id, None)
            return len(expired)

    # ---- staging ----

    def insert_staged(self, session_id: str, record: StagedRecord) -> int:
        with self._lock:
            staged_id = next(self._staged_ids)
            self._staged.setdefault(session_id, {})[record.sequence] = record.model_copy(
                update={"staged_id": staged_id}
            )
            return staged_id

    def update_staged(self, record: StagedRecord) -> None:
        with self._lock:
            self._staged.setdefault(record.session_id, {})[record.sequence] = record.model_copy()

    def list_staged(self, session_id: str) -> list[StagedRecord]:
        with self._lock:
            records = self._staged.get(session_id, {})
            return [records[seq] for seq in sorted(records)]

    # ---- contracts ----

    def commit_contract(self, draft: ContractDraft) -> int:
        with self._lock:
            key = draft.natural_key()
            if key in self._contract_keys:
                raise ConflictError(
                    f"Contract {draft.contract_number} already exists for tenant {draft.tenant_id}"
                )
            contract_id = next(self._contract_ids)
            while contract_id in self._contracts:
                contract_id = next(self._contract_ids)
            self._contracts[contract_id] = draft.with_id(contract_id)
            self._contract_keys[key] = contract_id
            return contract_id

    def seed_contract(self, draft: ContractDraft) -> int:
        """Store a contract with its own id, as if promoted earlier."""
        if draft.id is None:
            return self.commit_contract(draft)
        with self._lock:
            self._contracts[draft.id] = draft
            self._contract_keys[draft.natural_key()] = draft.id
            return draft.id

    def update_contract(
        self,
        contract_id: int,
        draft: ContractDraft,
        expected_current_status: ContractStatus,
    ) -> None:
        with self._lock:
            existing = self._contracts.get(contract_id)
            if existing is None or existing.tenant_id != draft.tenant_id:
                raise ConflictError(f"Contract {contract_id} not found", expected=expected_current_status.value)
            if existing.status is not expected_current_status:
                raise ConflictError(
                    f"Contract {contract_id} status changed concurrently",
                    expected=expected_current_status.value,
                    actual=existing.status.value,
                )
            self._contract_keys.pop(existing.natural_key(), None)
            self._contracts[contract_id] = draft.with_id(contract_id)
            self._contract_keys[draft.natural_key()] = contract_id

    def get_contract_status(self, tenant_id: str, contract_id: int) -> ContractStatus | None:
        contract = self.get_contract(tenant_id, contract_id)
        return contract.status if contract else None

    def get_contract(self, tenant_id: str, contract_id: int) -> ContractDraft | None:
        with self._lock:
            contract = self._contracts.get(contract_id)
            if contract is None or contract.tenant_id != tenant_id:
                return None
            return contract

    # ---- customers ----

    def upsert_customer(self, draft: CustomerDraft) -> int:
        with self._lock:
            key = draft.natural_key()
            customer_id = self._customer_keys.get(key)
            if customer_id is None:
                customer_id = next(self._customer_ids)
                self._customer_keys[key] = customer_id
            self._customers[customer_id] = draft.with_id(customer_id)
            return customer_id

    def get_customer(self, tenant_id: str, customer_id: int) -> CustomerDraft | None:
        with self._lock:
            customer = self._customers.get(customer_id)
            if customer is None or customer.tenant_id != tenant_id:
                return None
            return customer

    # ---- idempotency ledger ----

    def ledger_check_and_mark(
        self,
        fingerprint: str,
        stale_after_seconds: float | None,
        dedup_window_seconds: float | None = None,
    ) -> CheckResult:
        with self._lock:
            now = utcnow()
            record = self._ledger.get(fingerprint)

            expired = (
                record is not None
                and record.outcome is LedgerOutcome.PROCESSED
                and dedup_window_seconds is not None
                and now - record.updated_at > timedelta(seconds=dedup_window_seconds)
            )
            if record is None or expired:
                self._ledger[fingerprint] = IdempotencyRecord(
                    fingerprint=fingerprint, first_seen_at=now, updated_at=now
                )
                return CheckResult.FIRST_SEEN

            if record.outcome is LedgerOutcome.PROCESSED:
                return CheckResult.ALREADY_PROCESSED

            if record.outcome is LedgerOutcome.DEAD_LETTER:
                return CheckResult.DEAD_LETTERED

            if record.outcome is LedgerOutcome.FAILED:
                self._ledger[fingerprint] = record.model_copy(update={
                    "outcome": LedgerOutcome.IN_PROGRESS,
                    "updated_at": now,
                    "attempts": record.attempts + 1,
                })
                return CheckResult.FIRST_SEEN

            stale = (
                stale_after_seconds is not None
                and record.stale_releases == 0
                and now - record.updated_at > timedelta(seconds=stale_after_seconds)
            )
            if stale:
                self._ledger[fingerprint] = record.model_copy(update={
                    "updated_at": now,
                    "attempts": record.attempts + 1,
                    "stale_releases": record.stale_releases + 1,
                })
                return CheckResult.FIRST_SEEN

            return CheckResult.IN_PROGRESS_CONFLICT

    def ledger_mark_outcome(self, fingerprint: str, outcome: LedgerOutcome) -> None:
        with self._lock:
            now = utcnow()
            record = self._ledger.get(fingerprint)
            if record is None:
                self._ledger[fingerprint] = IdempotencyRecord(
                    fingerprint=fingerprint, outcome=outcome, first_seen_at=now, updated_at=now
                )
            else:
                self._ledger[fingerprint] = record.model_copy(update={"outcome": outcome, "updated_at": now})

    def ledger_get(self, fingerprint: str) -> IdempotencyRecord | None:
        with self._lock:
            return self._ledger.get(fingerprint)

    # ---- dead letters ----

    def store_dead_letter(self, message: IntegrationMessage, reason: str) -> int:
        with self._lock:
            self.dead_letters.append((message, reason))
            return len(self.dead_letters)
