"""
IngestionSession model: lifecycle and aggregated outcome of one batch.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from clm_integration.core.errors import IllegalSessionTransitionError

from .staged_record import EntityKind, StagingStatus, utcnow
from .validation_result import ValidationResult


class SessionStatus(str, Enum):
    OPEN = "OPEN"
    STAGING = "STAGING"
    TRANSFORMING = "TRANSFORMING"
    VALIDATING = "VALIDATING"
    PROMOTING = "PROMOTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


SESSION_ORDER: tuple[SessionStatus, ...] = (
    SessionStatus.OPEN,
    SessionStatus.STAGING,
    SessionStatus.TRANSFORMING,
    SessionStatus.VALIDATING,
    SessionStatus.PROMOTING,
    SessionStatus.COMPLETED,
)

TERMINAL_SESSION_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED})


class SessionCounts(BaseModel):
    received: int = 0
    staged: int = 0
    validated: int = 0
    failed: int = 0
    promoted: int = 0


class RecordOutcome(BaseModel):
    """Final word on one staged record: where it ended up and why."""

    sequence: int
    natural_key: str
    status: StagingStatus
    result: ValidationResult
    assigned_id: int | None = None


class IngestionSession(BaseModel):
    """
    One batch ingestion, from acceptance to a terminal state.

    Status only advances through SESSION_ORDER, except that FAILED can be
    entered from any non-terminal state. Sessions are never deleted.

    Attributes:
        session_id: Opaque id generated at open
        source_system: Tag of the system that sent the batch
        entity_kind: contract or customer
        status: Current lifecycle status
        counts: received/staged/validated/failed/promoted counters
        outcomes: Per-record outcomes ordered by sequence
        error_message: Why the session failed, if it did
    """

    session_id: str = Field(..., min_length=1)
    source_system: str = Field(..., min_length=1)
    entity_kind: EntityKind
    status: SessionStatus = SessionStatus.OPEN
    counts: SessionCounts = Field(default_factory=SessionCounts)
    outcomes: list[RecordOutcome] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    error_message: str | None = None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    def can_advance_to(self, target: SessionStatus) -> bool:
        if self.is_terminal():
            return False
        if target is SessionStatus.FAILED:
            return True
        return SESSION_ORDER.index(target) > SESSION_ORDER.index(self.status)

    def advance_to(self, target: SessionStatus, error_message: str | None = None) -> None:
        """
        Move the session forward.

        Raises:
            IllegalSessionTransitionError: If target is behind the current
                status or the session is already terminal
        """
        if not self.can_advance_to(target):
            raise IllegalSessionTransitionError(self.session_id, self.status.value, target.value)
        now = utcnow()
        self.status = target
        self.updated_at = now
        if target in TERMINAL_SESSION_STATUSES:
            self.completed_at = now
        if error_message is not None:
            self.error_message = error_message

    def add_outcome(self, outcome: RecordOutcome) -> None:
        """Append an outcome, keeping the list ordered by sequence."""
        self.outcomes.append(outcome)
        self.outcomes.sort(key=lambda o: o.sequence)
        self.updated_at = utcnow()

    def has_errors(self) -> bool:
        return self.counts.failed > 0

    def success_rate(self) -> float:
        """Percentage of received records that were promoted."""
        if self.counts.received <= 0:
            return 0.0
        promoted = max(0, min(self.counts.promoted, self.counts.received))
        return promoted / self.counts.received * 100

    def summary(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "source_system": self.source_system,
            "entity_kind": self.entity_kind.value,
            "status": self.status.value,
            **self.counts.model_dump(),
            "success_rate": round(self.success_rate(), 2),
        }
