"""
End-to-end tests for batch ingestion through the service facade.

Flow: open session -> stage -> transform/validate -> promote -> ETL_COMPLETE
notification.
"""

import json
import os

import pytest

from clm_integration.core.models import ErrorCode, LedgerOutcome, SessionStatus, StagingStatus
from clm_integration.core.state_machine import ContractStatus


def load_fixture(test_data_dir: str, name: str) -> list[dict]:
    with open(os.path.join(test_data_dir, name)) as f:
        return json.load(f)


@pytest.mark.e2e
class TestContractIngestion:
    """Contract batches end to end"""

    def test_single_valid_contract(self, service, repository):
        session_id = service.open_session("crm", "contract", [
            {"contractNumber": "CNT-001", "customerId": 100, "targetStatus": "PENDING"},
        ])

        session = service.get_session_status(session_id)
        assert session.status is SessionStatus.COMPLETED
        assert session.counts.promoted == 1
        assert session.counts.failed == 0

        contract_id = session.outcomes[0].assigned_id
        stored = repository.get_contract("DEFAULT", contract_id)
        assert stored.contract_number == "CNT-001"
        assert stored.status is ContractStatus.PENDING

    def test_dirty_contract_batch(self, service, repository, test_data_dir):
        records = load_fixture(test_data_dir, "contracts.json")

        session = service.get_session_status(service.open_session("crm", "contract", records))

        assert session.status is SessionStatus.COMPLETED
        assert session.counts.received == 5
        assert session.counts.promoted == 1
        assert session.counts.failed == 4

        codes = [o.result.error_code for o in session.outcomes]
        assert codes == [
            None,
            ErrorCode.INVALID_DATE_RANGE.value,
            ErrorCode.FIELD_INVALID.value,
            ErrorCode.ILLEGAL_TRANSITION.value,
            ErrorCode.DUPLICATE_IN_SESSION.value,
        ]
        # Raw input stays untouched in staging
        staged = repository.list_staged(session.session_id)
        assert staged[2].fields["customerId"] == "not-a-number"
        assert staged[2].status is StagingStatus.REJECTED

    def test_rerun_updates_existing_contract(self, service, repository):
        first = service.get_session_status(service.open_session("crm", "contract", [
            {"contractNumber": "CNT-010", "customerId": 1, "targetStatus": "PENDING"},
        ]))
        contract_id = first.outcomes[0].assigned_id

        second = service.get_session_status(service.open_session("crm", "contract", [
            {"contractNumber": "CNT-010", "customerId": 1, "id": contract_id, "targetStatus": "ACTIVE"},
            {"contractNumber": "CNT-010", "customerId": 1, "targetStatus": "PENDING"},
        ]))

        assert second.counts.promoted == 1
        assert repository.get_contract_status("DEFAULT", contract_id) is ContractStatus.ACTIVE

    def test_completion_notification_is_routed(self, service):
        session_id = service.open_session("crm", "contract", [
            {"contractNumber": "CNT-001", "customerId": 100},
        ])

        record = service.ledger.get(f"crm:etl-complete-{session_id}")
        assert record is not None
        assert record.outcome is LedgerOutcome.PROCESSED


@pytest.mark.e2e
class TestCustomerIngestion:
    """Customer batches end to end"""

    def test_dirty_customer_batch(self, service, repository, test_data_dir):
        records = load_fixture(test_data_dir, "customers.json")

        session = service.get_session_status(service.open_session("erp", "customer", records))

        assert session.counts.promoted == 2
        assert session.counts.failed == 3
        failures = {o.natural_key: o.result for o in session.outcomes if o.status is StagingStatus.REJECTED}
        assert failures["DEFAULT|CUS-003"].field_name == "taxId"
        assert failures["DEFAULT|CUS-004"].error_code == ErrorCode.TAXID_INVALID.value
        assert failures["DEFAULT|CUS-005"].error_code == ErrorCode.EMAIL_INVALID.value

        promoted = [o for o in session.outcomes if o.status is StagingStatus.PROMOTED]
        stored = repository.get_customer("DEFAULT", promoted[0].assigned_id)
        assert stored.tax_id == "52998224725"


@pytest.mark.e2e
@pytest.mark.integration
class TestPostgresIngestion:
    """The same flow against PostgreSQL"""

    def test_contract_batch_on_postgres(self, pg_repository, settings, test_data_dir):
        from clm_integration.service import ClmIntegrationService

        service = ClmIntegrationService(pg_repository, settings)
        records = load_fixture(test_data_dir, "contracts.json")

        session_id = service.open_session("crm", "contract", records)

        stored = pg_repository.get_session(session_id)
        assert stored.status is SessionStatus.COMPLETED
        assert stored.counts.promoted == 1
        assert stored.counts.failed == 4
        assert [o.sequence for o in stored.outcomes] == [1, 2, 3, 4, 5]
