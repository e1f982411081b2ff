"""
StagedRecord model representing one raw record held in staging.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .validation_result import ValidationResult


class EntityKind(str, Enum):
    CONTRACT = "contract"
    CUSTOMER = "customer"

    @classmethod
    def parse(cls, value: "str | EntityKind") -> "EntityKind":
        if isinstance(value, EntityKind):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown entity kind: {value}") from None


class StagingStatus(str, Enum):
    PENDING = "PENDING"
    TRANSFORMED = "TRANSFORMED"
    VALIDATED = "VALIDATED"
    PROMOTED = "PROMOTED"
    REJECTED = "REJECTED"


NATURAL_KEY_FIELDS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.CONTRACT: ("tenantId", "contractNumber"),
    EntityKind.CUSTOMER: ("tenantId", "customerCode"),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StagedRecord(BaseModel):
    """
    A raw external record tagged with its ingestion session.

    The session is the unit of lifetime; a staged record only references it.

    Attributes:
        session_id: Owning ingestion session
        sequence: 1-based position within the session; drives processing
            order and the duplicate tie-break
        entity_kind: contract or customer
        natural_key: Business key fields extracted at staging time
        fields: Original payload, never modified
        status: Staging status
        error: Failure recorded against the record, if any
        staged_id: Identifier assigned by the persistence layer
        processed_at: Last time a stage touched the record
    """

    session_id: str = Field(..., min_length=1)
    sequence: int = Field(..., gt=0)
    entity_kind: EntityKind
    natural_key: dict[str, Any] = Field(default_factory=dict)
    fields: dict[str, Any]
    status: StagingStatus = StagingStatus.PENDING
    error: ValidationResult | None = None
    staged_id: int | None = None
    processed_at: datetime | None = None

    def natural_key_string(self) -> str:
        """Render the natural key deterministically, e.g. 'DEFAULT|CNT-001'."""
        parts = [str(self.natural_key.get(name, "")) for name in NATURAL_KEY_FIELDS[self.entity_kind]]
        return "|".join(parts)

    def with_status(
        self,
        status: StagingStatus,
        error: ValidationResult | None = None,
    ) -> "StagedRecord":
        return self.model_copy(update={"status": status, "error": error, "processed_at": utcnow()})

    def to_wire(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "sequence": self.sequence,
            "naturalKey": dict(self.natural_key),
            "fields": dict(self.fields),
        }
