"""
Staging store: raw records tagged with their ingestion session.
"""

from typing import Any

from clm_integration.core.models import EntityKind, StagedRecord
from clm_integration.core.models.staged_record import NATURAL_KEY_FIELDS
from clm_integration.observability.logger import get_logger
from clm_integration.warehouse.repository import Repository

logger = get_logger(__name__)


class StagingStore:
    """
    Persists raw records per session and hands them back in sequence order.

    Records are never altered; only their staging status changes.
    """

    def __init__(self, repository: Repository, default_tenant: str = "DEFAULT"):
        self.repository = repository
        self.default_tenant = default_tenant

    def natural_key(self, entity_kind: EntityKind, fields: dict[str, Any]) -> dict[str, Any]:
        key = {}
        for name in NATURAL_KEY_FIELDS[entity_kind]:
            value = fields.get(name)
            if name == "tenantId" and (value is None or str(value).strip() == ""):
                value = self.default_tenant
            key[name] = value.strip() if isinstance(value, str) else value
        return key

    def stage(
        self,
        session_id: str,
        entity_kind: EntityKind,
        records: list[dict[str, Any]],
    ) -> list[StagedRecord]:
        """
        Stage a batch, assigning sequences 1..N in input order.

        Raises:
            PersistenceError: If a record cannot be stored
        """
        staged = []
        for sequence, fields in enumerate(records, start=1):
            record = StagedRecord(
                session_id=session_id,
                sequence=sequence,
                entity_kind=entity_kind,
                natural_key=self.natural_key(entity_kind, fields),
                fields=dict(fields),
            )
            staged_id = self.repository.insert_staged(session_id, record)
            staged.append(record.model_copy(update={"staged_id": staged_id}))

        logger.info(
            f"Staged {len(staged)} records",
            extra={"session_id": session_id, "entity_kind": entity_kind.value, "record_count": len(staged)},
        )
        return staged

    def list(self, session_id: str) -> list[StagedRecord]:
        return sorted(self.repository.list_staged(session_id), key=lambda r: r.sequence)

    def update(self, record: StagedRecord) -> None:
        self.repository.update_staged(record)
