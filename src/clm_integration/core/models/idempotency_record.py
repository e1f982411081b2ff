"""
IdempotencyRecord model: one entry of the idempotency ledger.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .staged_record import utcnow


class LedgerOutcome(str, Enum):
    PROCESSED = "PROCESSED"
    IN_PROGRESS = "IN_PROGRESS"
    FAILED = "FAILED"
    DEAD_LETTER = "DEAD_LETTER"


class CheckResult(str, Enum):
    FIRST_SEEN = "FIRST_SEEN"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    IN_PROGRESS_CONFLICT = "IN_PROGRESS_CONFLICT"
    DEAD_LETTERED = "DEAD_LETTERED"


class IdempotencyRecord(BaseModel):
    """
    Processing state of one message fingerprint.

    Attributes:
        fingerprint: Source system + message id, or a content hash
        outcome: Current processing state
        first_seen_at: When the fingerprint was first claimed
        updated_at: Last claim or outcome change
        attempts: Number of successful claims
        stale_releases: Times a stale IN_PROGRESS claim was released for retry
    """

    fingerprint: str = Field(..., min_length=1)
    outcome: LedgerOutcome = LedgerOutcome.IN_PROGRESS
    first_seen_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    attempts: int = 1
    stale_releases: int = 0
