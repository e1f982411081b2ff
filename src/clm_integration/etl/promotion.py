"""
Promotion stage: applies validated drafts to the system of record.

Each record is promoted in its own repository transaction. Promotions of the
same natural key within a session are serialized by a per-key lock, and the
record with the lowest sequence wins when a session carries duplicates.
"""

import threading
from collections import defaultdict

from pydantic import BaseModel

from clm_integration.core.errors import ConflictError
from clm_integration.core.models import (
    ContractDraft,
    CustomerDraft,
    ErrorCode,
    StagedRecord,
    ValidationResult,
)
from clm_integration.core.state_machine import can_transition
from clm_integration.observability.logger import get_logger
from clm_integration.observability.metrics import record_promotion
from clm_integration.warehouse.repository import Repository

from .transform import asserted_status

logger = get_logger(__name__)


class PromotionResult(BaseModel):
    result: ValidationResult
    assigned_id: int | None = None
    operation: str | None = None  # create, update or upsert

    @classmethod
    def rejected(cls, code: ErrorCode, message: str, field: str | None = None, operation: str | None = None):
        return cls(result=ValidationResult.error(code, message, field), operation=operation)


class PromotionStage:
    """
    Promotes validated drafts.

    Raises PersistenceError when the repository fails; conflicts and
    illegal status changes become PROMOTION_REJECTED outcomes.
    """

    def __init__(self, repository: Repository):
        self.repository = repository
        self._guard = threading.Lock()
        self._winners: dict[str, dict[str, int]] = {}
        self._promoted: dict[str, set[str]] = defaultdict(set)
        self._key_locks: dict[tuple[str, str], threading.Lock] = {}

    def plan(self, session_id: str, records: list[StagedRecord]) -> dict[str, int]:
        """
        Register the winning sequence for each natural key of a session.

        The lowest sequence wins regardless of which worker reaches the
        key first.
        """
        winners: dict[str, int] = {}
        for record in records:
            key = record.natural_key_string()
            if key not in winners or record.sequence < winners[key]:
                winners[key] = record.sequence
        with self._guard:
            self._winners[session_id] = winners
            self._promoted[session_id] = set()
        return winners

    def release(self, session_id: str) -> None:
        with self._guard:
            self._winners.pop(session_id, None)
            self._promoted.pop(session_id, None)
            for lock_key in [k for k in self._key_locks if k[0] == session_id]:
                del self._key_locks[lock_key]

    def _lock_for(self, session_id: str, key: str) -> threading.Lock:
        with self._guard:
            return self._key_locks.setdefault((session_id, key), threading.Lock())

    def promote(
        self,
        session_id: str,
        record: StagedRecord,
        draft: ContractDraft | CustomerDraft,
    ) -> PromotionResult:
        key = record.natural_key_string()
        with self._lock_for(session_id, key):
            with self._guard:
                winner = self._winners.get(session_id, {}).get(key)
                already_promoted = key in self._promoted[session_id]
            if (winner is not None and winner != record.sequence) or already_promoted:
                logger.info(
                    "Duplicate natural key in session",
                    extra={"session_id": session_id, "sequence": record.sequence, "natural_key": key},
                )
                return PromotionResult.rejected(
                    ErrorCode.DUPLICATE_IN_SESSION,
                    f"Natural key {key} is promoted by another record of this session",
                )

            if isinstance(draft, ContractDraft):
                outcome = self._promote_contract(record, draft)
            else:
                outcome = self._promote_customer(draft)

            record_promotion(record.entity_kind.value, outcome.operation or "unknown", outcome.result.valid)
            if outcome.result.valid:
                with self._guard:
                    self._promoted[session_id].add(key)
            return outcome

    def _promote_contract(self, record: StagedRecord, draft: ContractDraft) -> PromotionResult:
        if draft.is_create():
            try:
                contract_id = self.repository.commit_contract(draft)
            except ConflictError as e:
                return PromotionResult.rejected(ErrorCode.PROMOTION_REJECTED, e.message, operation="create")
            return PromotionResult(result=ValidationResult.success(), assigned_id=contract_id, operation="create")

        persisted = self.repository.get_contract_status(draft.tenant_id, draft.id)
        if persisted is None:
            return PromotionResult.rejected(
                ErrorCode.PROMOTION_REJECTED,
                f"Contract {draft.id} not found for tenant {draft.tenant_id}",
                "id",
                operation="update",
            )

        target = asserted_status(record.fields)
        if target is None:
            to_write = draft.with_status(persisted)
        elif not can_transition(persisted, target):
            return PromotionResult.rejected(
                ErrorCode.PROMOTION_REJECTED,
                f"Contract {draft.id} is {persisted.value}; cannot move to {target.value}",
                "targetStatus",
                operation="update",
            )
        else:
            to_write = draft

        try:
            self.repository.update_contract(draft.id, to_write, persisted)
        except ConflictError as e:
            return PromotionResult.rejected(ErrorCode.PROMOTION_REJECTED, e.message, operation="update")
        return PromotionResult(result=ValidationResult.success(), assigned_id=draft.id, operation="update")

    def _promote_customer(self, draft: CustomerDraft) -> PromotionResult:
        customer_id = self.repository.upsert_customer(draft)
        return PromotionResult(result=ValidationResult.success(), assigned_id=customer_id, operation="upsert")
