"""
Persistence collaborator interface.

Every component that touches storage receives a Repository at construction.
Implementations raise PersistenceError for any failure of the backing store
and ConflictError when a conditional write finds unexpected state.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

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
from clm_integration.core.state_machine import ContractStatus


class Repository(ABC):

    # ---- ingestion sessions ----

    @abstractmethod
    def create_session(self, session: IngestionSession) -> None:
        pass

    @abstractmethod
    def save_session(self, session: IngestionSession) -> None:
        """Persist the current status, counts and outcomes of a session."""
        pass

    @abstractmethod
    def get_session(self, session_id: str) -> IngestionSession | None:
        pass

    @abstractmethod
    def purge_sessions(self, completed_before: datetime) -> int:
        """
        Delete terminal sessions completed before a cutoff, with their staged records.

        Returns:
            Number of sessions deleted
        """
        pass

    # ---- staging ----

    @abstractmethod
    def insert_staged(self, session_id: str, record: StagedRecord) -> int:
        """Persist a staged record and return its staged_id."""
        pass

    @abstractmethod
    def update_staged(self, record: StagedRecord) -> None:
        pass

    @abstractmethod
    def list_staged(self, session_id: str) -> list[StagedRecord]:
        """Return the session's staged records ordered by sequence."""
        pass

    # ---- contracts ----

    @abstractmethod
    def commit_contract(self, draft: ContractDraft) -> int:
        """
        Insert a new contract and return its id.

        Raises:
            ConflictError: If the tenant already has the contract number
        """
        pass

    @abstractmethod
    def update_contract(
        self,
        contract_id: int,
        draft: ContractDraft,
        expected_current_status: ContractStatus,
    ) -> None:
        """
        Update a contract only if its persisted status still matches.

        Raises:
            ConflictError: If the contract is missing or its status changed
        """
        pass

    @abstractmethod
    def get_contract_status(self, tenant_id: str, contract_id: int) -> ContractStatus | None:
        pass

    @abstractmethod
    def get_contract(self, tenant_id: str, contract_id: int) -> ContractDraft | None:
        pass

    # ---- customers ----

    @abstractmethod
    def upsert_customer(self, draft: CustomerDraft) -> int:
        """Insert or merge a customer by (tenant_id, customer_code) and return its id."""
        pass

    @abstractmethod
    def get_customer(self, tenant_id: str, customer_id: int) -> CustomerDraft | None:
        pass

    # ---- idempotency ledger ----

    @abstractmethod
    def ledger_check_and_mark(
        self,
        fingerprint: str,
        stale_after_seconds: float | None,
        dedup_window_seconds: float | None = None,
    ) -> CheckResult:
        """
        Atomically classify a fingerprint and claim it when it may be processed.

        Unknown and FAILED fingerprints are claimed IN_PROGRESS (FIRST_SEEN).
        PROCESSED gives ALREADY_PROCESSED until the entry is older than
        dedup_window_seconds; it is then forgotten and claimed afresh.
        DEAD_LETTER gives DEAD_LETTERED. IN_PROGRESS gives
        IN_PROGRESS_CONFLICT unless the claim is older than
        stale_after_seconds and has never been released, in which case it is
        released once and reclaimed (FIRST_SEEN).
        """
        pass

    @abstractmethod
    def ledger_mark_outcome(self, fingerprint: str, outcome: LedgerOutcome) -> None:
        pass

    @abstractmethod
    def ledger_get(self, fingerprint: str) -> IdempotencyRecord | None:
        pass

    # ---- dead letters ----

    @abstractmethod
    def store_dead_letter(self, message: IntegrationMessage, reason: str) -> int:
        pass

    def close(self) -> None:
        """Release resources held by the repository."""


def contract_to_row(draft: ContractDraft) -> dict[str, Any]:
    """Column values for a contract row."""
    return {
        "tenant_id": draft.tenant_id,
        "contract_number": draft.contract_number,
        "customer_id": draft.customer_id,
        "status": draft.status.value,
        "contract_type": draft.contract_type,
        "start_date": draft.start_date,
        "end_date": draft.end_date,
        "duration_months": draft.duration_months,
        "auto_renew": draft.auto_renew,
        "total_value": draft.total_value,
        "payment_terms": draft.payment_terms,
        "billing_cycle": draft.billing_cycle,
        "notes": draft.notes,
    }


CUSTOMER_COLUMNS = (
    "tenant_id",
    "customer_code",
    "customer_type",
    "name",
    "trade_name",
    "tax_id",
    "email",
    "phone",
    "address_street",
    "address_city",
    "address_state",
    "address_zip",
    "address_country",
    "active",
)


def customer_to_row(draft: CustomerDraft) -> dict[str, Any]:
    row = {column: getattr(draft, column) for column in CUSTOMER_COLUMNS}
    row["customer_type"] = draft.customer_type.value
    return row
