"""
End-to-end tests for integration messages through the service facade.
"""

import json
import os
import threading
import time

import pytest

from clm_integration.config.settings import EtlSettings, IntegrationSettings, Settings
from clm_integration.core.errors import MessageHandlingError, PersistenceError, UnroutableMessageError
from clm_integration.core.models import ContractDraft, ErrorCode, LedgerOutcome, RoutingStatus, SessionStatus
from clm_integration.core.state_machine import ContractStatus
from clm_integration.service import ClmIntegrationService
from clm_integration.utils.validation import InputValidationError
from clm_integration.warehouse.memory import InMemoryRepository


class FlakyStagingRepository(InMemoryRepository):
    """Repository whose staging inserts fail while broken is set"""

    def __init__(self):
        super().__init__()
        self.broken = True

    def insert_staged(self, session_id, record):
        if self.broken:
            raise PersistenceError("insert_staged", "connection reset")
        return super().insert_staged(session_id, record)


def etl_batch(message_id: str, records: list) -> dict:
    return {
        "eventType": "ETL_BATCH",
        "tenantId": "DEFAULT",
        "correlationId": f"batch-{message_id}",
        "messageId": message_id,
        "sourceSystem": "crm",
        "payload": {"entityType": "contract", "records": records},
    }


@pytest.mark.e2e
class TestMessageRouting:
    """Messages from external systems end to end"""

    def test_fixture_messages(self, service, repository, test_data_dir):
        with open(os.path.join(test_data_dir, "messages.json")) as f:
            messages = json.load(f)

        first = service.submit_integration_message(messages[0])
        duplicate = service.submit_integration_message(messages[1])
        with pytest.raises(UnroutableMessageError):
            service.submit_integration_message(messages[2])

        assert first.status is RoutingStatus.ROUTED
        assert duplicate.status is RoutingStatus.DUPLICATE
        assert len(repository.dead_letters) == 1
        assert service.ledger.get("billing:m-2").outcome is LedgerOutcome.FAILED

    def test_etl_batch_message_runs_session(self, service):
        outcome = service.submit_integration_message({
            "eventType": "ETL_BATCH",
            "tenantId": "DEFAULT",
            "correlationId": "batch-1",
            "messageId": "b-1",
            "sourceSystem": "crm",
            "payload": {
                "entityType": "contract",
                "records": [{"contractNumber": "CNT-001", "customerId": 100}],
            },
        })

        assert outcome.status is RoutingStatus.ROUTED
        session_id = outcome.detail.split()[-1]
        session = service.get_session_status(session_id)
        assert session.status is SessionStatus.COMPLETED
        assert session.counts.promoted == 1

    def test_etl_batch_without_records_fails(self, service):
        with pytest.raises(MessageHandlingError, match="records list"):
            service.submit_integration_message({
                "eventType": "ETL_BATCH",
                "tenantId": "DEFAULT",
                "correlationId": "batch-2",
                "messageId": "b-2",
                "sourceSystem": "crm",
                "payload": {"entityType": "contract"},
            })

        assert service.ledger.get("crm:b-2").outcome is LedgerOutcome.FAILED

    def test_status_change_for_promoted_contract(self, service, repository):
        repository.seed_contract(ContractDraft(
            tenant_id="DEFAULT", contract_number="CNT-042", customer_id=1, id=42, status=ContractStatus.ACTIVE,
        ))

        outcome = service.submit_integration_message({
            "eventType": "CONTRACT_STATUS_CHANGED",
            "tenantId": "DEFAULT",
            "correlationId": "c-42",
            "payload": {"contractId": 42, "oldStatus": "ACTIVE", "newStatus": "SUSPENDED"},
        })

        assert outcome.status is RoutingStatus.ROUTED
        assert outcome.fingerprint.startswith("sha256:")
        assert "ACTIVE -> SUSPENDED" in outcome.detail

    def test_contract_updates_aggregate(self, service):
        """Test a burst of updates sharing a correlation id reaches the handler once"""
        outcomes = []
        outcomes_lock = threading.Lock()

        def submit(message_id: str, payload: dict):
            outcome = service.submit_integration_message({
                "eventType": "CONTRACT_UPDATED",
                "tenantId": "DEFAULT",
                "correlationId": "upd-1",
                "messageId": message_id,
                "sourceSystem": "crm",
                "payload": payload,
            })
            with outcomes_lock:
                outcomes.append(outcome)

        leader = threading.Thread(target=submit, args=("u-1", {"contractId": 7, "expectedCount": 3}))
        leader.start()
        deadline = time.monotonic() + 2
        while service.buffer.open_groups() == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        submit("u-2", {"notes": "b"})
        submit("u-3", {"notes": "c"})
        leader.join()

        statuses = sorted(o.status.value for o in outcomes)
        assert statuses == ["AGGREGATING", "AGGREGATING", "ROUTED"]
        routed = next(o for o in outcomes if o.status is RoutingStatus.ROUTED)
        assert routed.message_count == 3
        assert routed.code is None
        for message_id in ("u-1", "u-2", "u-3"):
            assert service.ledger.get(f"crm:{message_id}").outcome is LedgerOutcome.PROCESSED


@pytest.mark.e2e
class TestEtlBatchFailures:
    """ETL batches whose session does not complete"""

    def test_failed_session_fails_the_message(self, settings):
        repository = FlakyStagingRepository()
        service = ClmIntegrationService(repository, settings)
        message = etl_batch("b-10", [{"contractNumber": "CNT-010", "customerId": 100}])

        with pytest.raises(MessageHandlingError, match="connection reset"):
            service.submit_integration_message(message)

        assert service.ledger.get("crm:b-10").outcome is LedgerOutcome.FAILED
        [failed] = repository._sessions.values()
        assert failed.status is SessionStatus.FAILED

        repository.broken = False
        outcome = service.submit_integration_message(message)

        assert outcome.status is RoutingStatus.ROUTED
        session = service.get_session_status(outcome.detail.split()[-1])
        assert session.status is SessionStatus.COMPLETED
        assert session.counts.promoted == 1
        assert service.ledger.get("crm:b-10").outcome is LedgerOutcome.PROCESSED

    def test_batch_dead_lettered_after_max_retries(self):
        repository = FlakyStagingRepository()
        settings = Settings(integration=IntegrationSettings(max_retries=2, aggregation_timeout_seconds=0.5))
        service = ClmIntegrationService(repository, settings)
        message = etl_batch("b-11", [{"contractNumber": "CNT-011", "customerId": 100}])

        for _ in range(2):
            with pytest.raises(MessageHandlingError):
                service.submit_integration_message(message)
        repository.broken = False
        outcome = service.submit_integration_message(message)

        assert outcome.status is RoutingStatus.DEAD_LETTER
        assert outcome.code == ErrorCode.RETRIES_EXHAUSTED.value
        assert len(repository.dead_letters) == 1
        assert len(repository._sessions) == 2

    def test_invalid_records_open_no_session(self, service, repository):
        with pytest.raises(InputValidationError):
            service.open_session("crm", "contract", [1, 2])

        assert repository._sessions == {}

    def test_oversized_batch_opens_no_session(self, repository):
        service = ClmIntegrationService(repository, Settings(etl=EtlSettings(batch_size=1)))

        with pytest.raises(InputValidationError, match="maximum batch size"):
            service.open_session("crm", "contract", [{"contractNumber": "CNT-1"}, {"contractNumber": "CNT-2"}])

        assert repository._sessions == {}
