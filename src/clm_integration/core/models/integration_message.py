"""
Integration message models: inbound events, aggregates and routing outcomes.
"""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .staged_record import utcnow


class EventType(str, Enum):
    CONTRACT_CREATED = "CONTRACT_CREATED"
    CONTRACT_UPDATED = "CONTRACT_UPDATED"
    CONTRACT_STATUS_CHANGED = "CONTRACT_STATUS_CHANGED"
    CUSTOMER_CREATED = "CUSTOMER_CREATED"
    CUSTOMER_UPDATED = "CUSTOMER_UPDATED"
    ETL_BATCH = "ETL_BATCH"
    ETL_COMPLETE = "ETL_COMPLETE"

    @classmethod
    def lookup(cls, value: str) -> "EventType | None":
        try:
            return cls(value)
        except ValueError:
            return None


# Event types whose messages are collected per correlation id before delivery
AGGREGATING_EVENT_TYPES = frozenset({EventType.CONTRACT_UPDATED})


class IntegrationMessage(BaseModel):
    """
    An event arriving from an external system.

    event_type stays a plain string so that unknown types reach the router,
    which reports them as unroutable instead of failing at parse time.

    Attributes:
        event_type: Event type tag
        tenant_id: Owning tenant
        correlation_id: Groups related messages for aggregation
        payload: Event body
        message_id: External message id, when the sender provides one
        source_system: Sender tag, part of the fingerprint
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "event_type": "CONTRACT_STATUS_CHANGED",
                "tenant_id": "DEFAULT",
                "correlation_id": "corr-123",
                "payload": {"contractId": 42, "oldStatus": "PENDING", "newStatus": "ACTIVE"},
                "message_id": "msg-0001",
                "source_system": "crm",
            }
        },
    )

    event_type: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    correlation_id: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    message_id: str | None = None
    source_system: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "IntegrationMessage":
        """Build a message from the camelCase wire shape."""
        return cls(
            event_type=data["eventType"],
            tenant_id=data["tenantId"],
            correlation_id=data["correlationId"],
            payload=data.get("payload") or {},
            message_id=data.get("messageId"),
            source_system=data.get("sourceSystem"),
        )

    def to_wire(self) -> dict[str, Any]:
        wire = {
            "eventType": self.event_type,
            "tenantId": self.tenant_id,
            "correlationId": self.correlation_id,
            "payload": dict(self.payload),
        }
        if self.message_id:
            wire["messageId"] = self.message_id
        if self.source_system:
            wire["sourceSystem"] = self.source_system
        return wire

    def fingerprint(self) -> str:
        """
        Deterministic duplicate-detection key.

        Source system plus external message id when an id is supplied,
        otherwise a SHA-256 hash of the canonical JSON content.
        """
        if self.message_id:
            return f"{self.source_system or 'unknown'}:{self.message_id}"
        content = json.dumps(
            {"eventType": self.event_type, "tenantId": self.tenant_id, "payload": self.payload},
            sort_keys=True,
            default=str,
        )
        return "sha256:" + hashlib.sha256(content.encode()).hexdigest()


class AggregatedMessage(BaseModel):
    """Messages sharing a correlation id, delivered to a handler as one unit."""

    correlation_id: str
    event_type: EventType
    tenant_id: str
    messages: list[IntegrationMessage]
    partial: bool = False

    @property
    def payload(self) -> dict[str, Any]:
        """Merge member payloads in arrival order; later keys win."""
        merged: dict[str, Any] = {}
        for message in self.messages:
            merged.update(message.payload)
        return merged

    @property
    def fingerprints(self) -> list[str]:
        return [message.fingerprint() for message in self.messages]


class RoutingStatus(str, Enum):
    ROUTED = "ROUTED"
    DUPLICATE = "DUPLICATE"
    IN_PROGRESS = "IN_PROGRESS"
    AGGREGATING = "AGGREGATING"
    UNROUTABLE = "UNROUTABLE"
    DEAD_LETTER = "DEAD_LETTER"
    FAILED = "FAILED"


class RoutingOutcome(BaseModel):
    """What the router did with one message."""

    status: RoutingStatus
    fingerprint: str
    event_type: str
    handler: str | None = None
    code: str | None = None
    message_count: int = 1
    detail: str | None = None
