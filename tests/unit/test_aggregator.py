"""
Unit tests for the correlation buffer.
"""

import threading
import time

import pytest

from clm_integration.core.models import EventType, IntegrationMessage
from clm_integration.integration.aggregator import CorrelationBuffer


def update(message_id: str, correlation_id: str = "corr-1", tenant_id: str = "DEFAULT", **payload) -> IntegrationMessage:
    return IntegrationMessage(
        event_type=EventType.CONTRACT_UPDATED.value,
        tenant_id=tenant_id,
        correlation_id=correlation_id,
        payload={"contractId": 1, **payload},
        message_id=message_id,
        source_system="crm",
    )


@pytest.mark.unit
class TestCorrelationBuffer:
    """Tests for CorrelationBuffer"""

    def test_first_message_leads(self):
        buffer = CorrelationBuffer(timeout_seconds=1)

        leader, group = buffer.offer(EventType.CONTRACT_UPDATED, update("1"))
        follower, same_group = buffer.offer(EventType.CONTRACT_UPDATED, update("2"))

        assert leader is True
        assert follower is False
        assert same_group is group
        assert len(group.messages) == 2

    def test_groups_keyed_by_correlation_id(self):
        buffer = CorrelationBuffer(timeout_seconds=1)

        buffer.offer(EventType.CONTRACT_UPDATED, update("1", correlation_id="a"))
        leader, _ = buffer.offer(EventType.CONTRACT_UPDATED, update("2", correlation_id="b"))

        assert leader is True
        assert buffer.open_groups() == 2

    def test_groups_separated_by_tenant(self):
        buffer = CorrelationBuffer(timeout_seconds=0.05)

        _, acme = buffer.offer(EventType.CONTRACT_UPDATED, update("1", tenant_id="ACME"))
        leader, globex = buffer.offer(EventType.CONTRACT_UPDATED, update("2", tenant_id="GLOBEX"))

        assert leader is True
        assert globex is not acme
        assert buffer.open_groups() == 2
        assert buffer.wait_for(acme).tenant_id == "ACME"
        assert buffer.wait_for(globex).tenant_id == "GLOBEX"
        assert len(acme.messages) == 1

    def test_final_flag_completes_immediately(self):
        buffer = CorrelationBuffer(timeout_seconds=10)
        _, group = buffer.offer(EventType.CONTRACT_UPDATED, update("1", notes="a"))
        buffer.offer(EventType.CONTRACT_UPDATED, update("2", final=True))

        started = time.monotonic()
        aggregate = buffer.wait_for(group)

        assert time.monotonic() - started < 1
        assert aggregate.partial is False
        assert aggregate.fingerprints == ["crm:1", "crm:2"]
        assert buffer.open_groups() == 0

    def test_expected_count_reached_by_late_member(self):
        buffer = CorrelationBuffer(timeout_seconds=5)
        _, group = buffer.offer(EventType.CONTRACT_UPDATED, update("1", expectedCount=3))

        def late_members():
            time.sleep(0.05)
            buffer.offer(EventType.CONTRACT_UPDATED, update("2"))
            buffer.offer(EventType.CONTRACT_UPDATED, update("3"))

        thread = threading.Thread(target=late_members)
        thread.start()
        aggregate = buffer.wait_for(group)
        thread.join()

        assert aggregate.partial is False
        assert len(aggregate.messages) == 3

    def test_timeout_delivers_partial_group(self):
        buffer = CorrelationBuffer(timeout_seconds=0.1)
        _, group = buffer.offer(EventType.CONTRACT_UPDATED, update("1", expectedCount=2))

        aggregate = buffer.wait_for(group)

        assert aggregate.partial is True
        assert len(aggregate.messages) == 1
        assert group.closed is True

    def test_expected_count_must_be_an_integer(self):
        buffer = CorrelationBuffer(timeout_seconds=0.05)
        _, group = buffer.offer(EventType.CONTRACT_UPDATED, update("1", expectedCount="1"))

        assert buffer.wait_for(group).partial is True

    def test_closed_group_starts_fresh(self):
        buffer = CorrelationBuffer(timeout_seconds=0.05)
        _, group = buffer.offer(EventType.CONTRACT_UPDATED, update("1", final=True))
        buffer.wait_for(group)

        leader, new_group = buffer.offer(EventType.CONTRACT_UPDATED, update("2"))

        assert leader is True
        assert new_group is not group
