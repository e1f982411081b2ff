"""
Core data models for the CLM integration pipeline.

All models use Pydantic for runtime validation and type safety.
"""

from .contract import ContractDraft
from .customer import CustomerDraft, CustomerType
from .idempotency_record import CheckResult, IdempotencyRecord, LedgerOutcome
from .integration_message import (
    AGGREGATING_EVENT_TYPES,
    AggregatedMessage,
    EventType,
    IntegrationMessage,
    RoutingOutcome,
    RoutingStatus,
)
from .session import IngestionSession, RecordOutcome, SessionCounts, SessionStatus
from .staged_record import EntityKind, StagedRecord, StagingStatus
from .validation_result import ErrorCode, ValidationResult

__all__ = [
    "AGGREGATING_EVENT_TYPES",
    "AggregatedMessage",
    "CheckResult",
    "ContractDraft",
    "CustomerDraft",
    "CustomerType",
    "EntityKind",
    "ErrorCode",
    "EventType",
    "IdempotencyRecord",
    "IngestionSession",
    "IntegrationMessage",
    "LedgerOutcome",
    "RecordOutcome",
    "RoutingOutcome",
    "RoutingStatus",
    "SessionCounts",
    "SessionStatus",
    "StagedRecord",
    "StagingStatus",
    "ValidationResult",
]
