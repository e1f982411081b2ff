"""
Content-based router for integration messages.

For every message: claim its fingerprint in the idempotency ledger, look up
the handler for its event type, optionally aggregate by correlation id,
invoke the handler and record the outcome in the ledger. A message is only
marked PROCESSED after its handler returned.
"""

from typing import Any

from clm_integration.core.errors import ConfigurationError, MessageHandlingError, UnroutableMessageError
from clm_integration.core.models import (
    AGGREGATING_EVENT_TYPES,
    AggregatedMessage,
    CheckResult,
    ErrorCode,
    EventType,
    IntegrationMessage,
    LedgerOutcome,
    RoutingOutcome,
    RoutingStatus,
)
from clm_integration.observability.logger import get_logger
from clm_integration.observability.metrics import (
    handler_duration_seconds,
    record_aggregation,
    record_routing,
    track_duration,
)
from clm_integration.warehouse.repository import Repository

from .aggregator import CorrelationBuffer
from .handlers import Handler
from .ledger import IdempotencyLedger

logger = get_logger(__name__)

UNKNOWN_EVENT_LABEL = "UNKNOWN"


def handler_name(handler: Handler) -> str:
    name = getattr(handler, "__qualname__", None)
    return name or type(handler).__name__


class IntegrationRouter:
    """
    Routes integration messages to handlers exactly once per fingerprint.

    Raises:
        ConfigurationError: At construction, if the handler table does not
            cover every EventType
    """

    def __init__(
        self,
        ledger: IdempotencyLedger,
        buffer: CorrelationBuffer,
        handlers: dict[EventType, Handler],
        repository: Repository,
    ):
        missing = [event_type.value for event_type in EventType if event_type not in handlers]
        if missing:
            raise ConfigurationError(f"No handler registered for event types: {', '.join(missing)}")
        not_callable = [event_type.value for event_type, h in handlers.items() if not callable(h)]
        if not_callable:
            raise ConfigurationError(f"Handlers are not callable for: {', '.join(not_callable)}")

        self.ledger = ledger
        self.buffer = buffer
        self.handlers = dict(handlers)
        self.repository = repository

    def route(self, message: IntegrationMessage) -> RoutingOutcome:
        """
        Route one message.

        Returns:
            RoutingOutcome: ROUTED, DUPLICATE, IN_PROGRESS, DEAD_LETTER or AGGREGATING

        Raises:
            UnroutableMessageError: If the event type has no route
            MessageHandlingError: If the handler failed
            PersistenceError: If the ledger cannot be reached
        """
        fingerprint = message.fingerprint()
        check = self.ledger.check_and_mark(fingerprint)

        if check is CheckResult.ALREADY_PROCESSED:
            return self._skipped(message, fingerprint, RoutingStatus.DUPLICATE, "already processed")
        if check is CheckResult.IN_PROGRESS_CONFLICT:
            return self._skipped(message, fingerprint, RoutingStatus.IN_PROGRESS, "being processed elsewhere")
        if check is CheckResult.DEAD_LETTERED:
            return self._skipped(
                message, fingerprint, RoutingStatus.DEAD_LETTER, "retries exhausted",
                code=ErrorCode.RETRIES_EXHAUSTED.value,
            )

        event_type = EventType.lookup(message.event_type)
        if event_type is None:
            self._unroutable(message, fingerprint)

        if event_type in AGGREGATING_EVENT_TYPES:
            leader, group = self.buffer.offer(event_type, message)
            if not leader:
                record_routing(event_type.value, RoutingStatus.AGGREGATING.value)
                return RoutingOutcome(
                    status=RoutingStatus.AGGREGATING,
                    fingerprint=fingerprint,
                    event_type=event_type.value,
                    detail=f"joined correlation group {message.correlation_id}",
                )
            aggregate = self.buffer.wait_for(group)
            record_aggregation(event_type.value, aggregate.partial)
            code = ErrorCode.PARTIAL_AGGREGATION.value if aggregate.partial else None
            return self._deliver(event_type, aggregate, code)

        return self._deliver(event_type, message)

    def _deliver(
        self,
        event_type: EventType,
        payload: IntegrationMessage | AggregatedMessage,
        code: str | None = None,
    ) -> RoutingOutcome:
        members = payload.messages if isinstance(payload, AggregatedMessage) else [payload]
        fingerprints = [member.fingerprint() for member in members]
        handler = self.handlers[event_type]
        name = handler_name(handler)
        try:
            with track_duration(handler_duration_seconds, event_type=event_type.value):
                detail = handler(payload)
        except Exception as e:
            for member, fingerprint in zip(members, fingerprints):
                if self.ledger.mark_failed(fingerprint) is LedgerOutcome.DEAD_LETTER:
                    self.repository.store_dead_letter(member, f"Retries exhausted: {e}")
            record_routing(event_type.value, RoutingStatus.FAILED.value)
            logger.error(
                "Handler failed",
                extra={
                    "event_type": event_type.value,
                    "handler": name,
                    "fingerprints": fingerprints,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
            )
            if isinstance(e, MessageHandlingError):
                raise
            raise MessageHandlingError(event_type.value, fingerprints[0], str(e)) from e

        for fingerprint in fingerprints:
            self.ledger.mark_processed(fingerprint)
        record_routing(event_type.value, RoutingStatus.ROUTED.value)
        logger.info(
            "Message routed",
            extra={
                "event_type": event_type.value,
                "handler": name,
                "message_count": len(fingerprints),
                "code": code,
            },
        )
        return RoutingOutcome(
            status=RoutingStatus.ROUTED,
            fingerprint=fingerprints[0],
            event_type=event_type.value,
            handler=name,
            code=code,
            message_count=len(fingerprints),
            detail=detail,
        )

    def _unroutable(self, message: IntegrationMessage, fingerprint: str) -> Any:
        self.ledger.mark_outcome(fingerprint, LedgerOutcome.FAILED)
        self.repository.store_dead_letter(message, f"Unknown event type: {message.event_type}")
        record_routing(UNKNOWN_EVENT_LABEL, RoutingStatus.UNROUTABLE.value)
        logger.error(
            "Unroutable message stored as dead letter",
            extra={"event_type": message.event_type, "fingerprint": fingerprint, "code": UnroutableMessageError.code},
        )
        raise UnroutableMessageError(message.event_type, fingerprint)

    def _skipped(
        self,
        message: IntegrationMessage,
        fingerprint: str,
        status: RoutingStatus,
        detail: str,
        code: str | None = None,
    ) -> RoutingOutcome:
        event_type = EventType.lookup(message.event_type)
        record_routing(event_type.value if event_type else UNKNOWN_EVENT_LABEL, status.value)
        return RoutingOutcome(
            status=status, fingerprint=fingerprint, event_type=message.event_type, code=code, detail=detail
        )
