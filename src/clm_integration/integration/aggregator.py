"""
Correlation buffer for aggregating related messages.

Messages of one tenant and event type sharing a correlation id form a
group. The first message of a group makes its caller the leader: the
leader waits until the group is complete or the timeout elapses and then
delivers the group once. Later messages only join the group.

A group is complete when the number of collected messages reaches the
expectedCount carried by any member payload, or when a member payload has
"final": true. Without either signal a group completes on timeout only,
and is then delivered as partial.
"""

import threading
import time
from dataclasses import dataclass, field

from clm_integration.core.models import AggregatedMessage, EventType, IntegrationMessage
from clm_integration.observability.logger import get_logger

logger = get_logger(__name__)


@dataclass
class CorrelationGroup:
    event_type: EventType
    correlation_id: str
    tenant_id: str
    messages: list[IntegrationMessage] = field(default_factory=list)
    opened_at: float = field(default_factory=time.monotonic)
    closed: bool = False

    @property
    def key(self) -> tuple[str, EventType, str]:
        return (self.tenant_id, self.event_type, self.correlation_id)

    def is_complete(self) -> bool:
        for message in self.messages:
            if message.payload.get("final") is True:
                return True
            expected = message.payload.get("expectedCount")
            if isinstance(expected, int) and not isinstance(expected, bool) and len(self.messages) >= expected > 0:
                return True
        return False


class CorrelationBuffer:
    """Thread-safe buffer of open correlation groups."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        self._groups: dict[tuple[str, EventType, str], CorrelationGroup] = {}
        self._condition = threading.Condition()

    def offer(self, event_type: EventType, message: IntegrationMessage) -> tuple[bool, CorrelationGroup]:
        """
        Add a message to its group.

        Returns:
            (is_leader, group); is_leader is True for the message that opened the group
        """
        key = (message.tenant_id, event_type, message.correlation_id)
        with self._condition:
            group = self._groups.get(key)
            leader = group is None
            if leader:
                group = CorrelationGroup(event_type, message.correlation_id, message.tenant_id)
                self._groups[key] = group
            group.messages.append(message)
            self._condition.notify_all()
        logger.debug(
            "Message buffered for aggregation",
            extra={
                "event_type": event_type.value,
                "correlation_id": message.correlation_id,
                "leader": leader,
                "group_size": len(group.messages),
            },
        )
        return leader, group

    def wait_for(self, group: CorrelationGroup) -> AggregatedMessage:
        """
        Block until the group is complete or timed out, then close it.

        Called by the group's leader only.
        """
        deadline = group.opened_at + self.timeout_seconds
        with self._condition:
            while not group.is_complete():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._condition.wait(remaining)

            partial = not group.is_complete()
            group.closed = True
            self._groups.pop(group.key, None)
            messages = list(group.messages)

        return AggregatedMessage(
            correlation_id=group.correlation_id,
            event_type=group.event_type,
            tenant_id=group.tenant_id,
            messages=messages,
            partial=partial,
        )

    def open_groups(self) -> int:
        with self._condition:
            return len(self._groups)
