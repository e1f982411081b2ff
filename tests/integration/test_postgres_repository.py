"""
Integration tests for the PostgreSQL repository.

Run against a disposable PostgreSQL container (testcontainers).
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from clm_integration.core.errors import ConflictError
from clm_integration.core.models import (
    ContractDraft,
    CustomerDraft,
    CustomerType,
    EntityKind,
    IngestionSession,
    IntegrationMessage,
    SessionStatus,
    StagedRecord,
    StagingStatus,
    ValidationResult,
)
from clm_integration.core.models.staged_record import utcnow
from clm_integration.core.state_machine import ContractStatus
from clm_integration.warehouse.schema_mgmt import TABLES, SchemaManager


def contract(number: str = "CNT-001", **overrides) -> ContractDraft:
    values = {
        "tenant_id": "DEFAULT",
        "contract_number": number,
        "customer_id": 100,
        "status": ContractStatus.PENDING,
        "start_date": date(2024, 1, 1),
        "end_date": date(2024, 12, 31),
        "total_value": Decimal("1200.50"),
    }
    values.update(overrides)
    return ContractDraft(**values)


@pytest.mark.integration
class TestSchema:
    """Tests for schema management"""

    def test_all_tables_exist(self, db_pool):
        manager = SchemaManager(db_pool)

        assert all(manager.table_exists(table) for table in TABLES)

    def test_create_schema_is_idempotent(self, db_pool):
        SchemaManager(db_pool).create_schema()
        SchemaManager(db_pool).create_schema()


@pytest.mark.integration
class TestSessionsAndStaging:
    """Tests for session rows and staged records"""

    def test_session_round_trip(self, pg_repository):
        session = IngestionSession(session_id="a" * 32, source_system="crm", entity_kind=EntityKind.CONTRACT)
        pg_repository.create_session(session)

        session.advance_to(SessionStatus.STAGING)
        session.counts.received = 3
        pg_repository.save_session(session)

        stored = pg_repository.get_session("a" * 32)
        assert stored.status is SessionStatus.STAGING
        assert stored.counts.received == 3
        assert stored.entity_kind is EntityKind.CONTRACT

    def test_unknown_session(self, pg_repository):
        assert pg_repository.get_session("b" * 32) is None

    def test_staged_records_listed_in_sequence(self, pg_repository):
        session = IngestionSession(session_id="c" * 32, source_system="crm", entity_kind=EntityKind.CONTRACT)
        pg_repository.create_session(session)
        for sequence in (2, 1):
            pg_repository.insert_staged(session.session_id, StagedRecord(
                session_id=session.session_id,
                sequence=sequence,
                entity_kind=EntityKind.CONTRACT,
                natural_key={"tenantId": "DEFAULT", "contractNumber": f"CNT-{sequence}"},
                fields={"contractNumber": f"CNT-{sequence}", "startDate": date(2024, 1, 1)},
            ))

        records = pg_repository.list_staged(session.session_id)

        assert [r.sequence for r in records] == [1, 2]
        assert records[0].fields["startDate"] == "2024-01-01"
        assert all(r.staged_id is not None for r in records)

    def test_update_staged_records_error(self, pg_repository):
        session = IngestionSession(session_id="d" * 32, source_system="crm", entity_kind=EntityKind.CUSTOMER)
        pg_repository.create_session(session)
        record = StagedRecord(session_id=session.session_id, sequence=1, entity_kind=EntityKind.CUSTOMER,
                              fields={"customerCode": "CUS-001"})
        pg_repository.insert_staged(session.session_id, record)

        error = ValidationResult.error("FIELD_REQUIRED", "Required field 'name' is missing", "name")
        pg_repository.update_staged(record.with_status(StagingStatus.REJECTED, error))

        stored = pg_repository.list_staged(session.session_id)[0]
        assert stored.status is StagingStatus.REJECTED
        assert stored.error == error

    def test_purge_finished_sessions(self, pg_repository):
        finished = IngestionSession(session_id="e" * 32, source_system="crm", entity_kind=EntityKind.CUSTOMER)
        still_open = IngestionSession(session_id="f" * 32, source_system="crm", entity_kind=EntityKind.CUSTOMER)
        for session in (finished, still_open):
            pg_repository.create_session(session)
            pg_repository.insert_staged(session.session_id, StagedRecord(
                session_id=session.session_id, sequence=1, entity_kind=EntityKind.CUSTOMER,
                fields={"customerCode": "CUS-001"},
            ))
        finished.advance_to(SessionStatus.FAILED, error_message="operator stop")
        pg_repository.save_session(finished)

        assert pg_repository.purge_sessions(utcnow() - timedelta(days=1)) == 0
        assert pg_repository.purge_sessions(utcnow() + timedelta(seconds=1)) == 1

        assert pg_repository.get_session(finished.session_id) is None
        assert pg_repository.list_staged(finished.session_id) == []
        assert pg_repository.get_session(still_open.session_id).status is SessionStatus.OPEN
        assert len(pg_repository.list_staged(still_open.session_id)) == 1


@pytest.mark.integration
class TestContracts:
    """Tests for contract writes"""

    def test_commit_and_read(self, pg_repository):
        contract_id = pg_repository.commit_contract(contract())

        stored = pg_repository.get_contract("DEFAULT", contract_id)
        assert stored.contract_number == "CNT-001"
        assert stored.total_value == Decimal("1200.50")
        assert pg_repository.get_contract_status("DEFAULT", contract_id) is ContractStatus.PENDING

    def test_duplicate_natural_key_conflicts(self, pg_repository):
        pg_repository.commit_contract(contract())

        with pytest.raises(ConflictError):
            pg_repository.commit_contract(contract(customer_id=200))

    def test_tenant_isolation(self, pg_repository):
        contract_id = pg_repository.commit_contract(contract())

        assert pg_repository.get_contract("OTHER", contract_id) is None
        assert pg_repository.commit_contract(contract(tenant_id="OTHER")) != contract_id

    def test_conditional_update(self, pg_repository):
        contract_id = pg_repository.commit_contract(contract())

        pg_repository.update_contract(
            contract_id, contract(status=ContractStatus.ACTIVE, notes="signed"), ContractStatus.PENDING
        )

        stored = pg_repository.get_contract("DEFAULT", contract_id)
        assert stored.status is ContractStatus.ACTIVE
        assert stored.notes == "signed"

    def test_update_with_stale_expectation(self, pg_repository):
        contract_id = pg_repository.commit_contract(contract())
        pg_repository.update_contract(contract_id, contract(status=ContractStatus.CANCELLED), ContractStatus.PENDING)

        with pytest.raises(ConflictError) as exc_info:
            pg_repository.update_contract(contract_id, contract(status=ContractStatus.ACTIVE), ContractStatus.PENDING)

        assert exc_info.value.actual == "CANCELLED"
        assert pg_repository.get_contract_status("DEFAULT", contract_id) is ContractStatus.CANCELLED

    def test_update_missing_contract(self, pg_repository):
        with pytest.raises(ConflictError, match="not found"):
            pg_repository.update_contract(999, contract(), ContractStatus.PENDING)


@pytest.mark.integration
class TestCustomers:
    """Tests for customer upserts"""

    def test_upsert_keeps_id(self, pg_repository):
        first = CustomerDraft(tenant_id="DEFAULT", customer_code="CUS-001", name="Maria",
                              tax_id="52998224725")
        customer_id = pg_repository.upsert_customer(first)

        again = pg_repository.upsert_customer(first.model_copy(update={"name": "Maria Silva"}))

        assert again == customer_id
        stored = pg_repository.get_customer("DEFAULT", customer_id)
        assert stored.name == "Maria Silva"
        assert stored.customer_type is CustomerType.INDIVIDUAL


@pytest.mark.integration
class TestDeadLetters:
    """Tests for dead-letter storage"""

    def test_store_dead_letter(self, pg_repository, db_pool):
        message = IntegrationMessage(event_type="INVOICE_PAID", tenant_id="DEFAULT", correlation_id="c-1",
                                     payload={"amount": Decimal("10.00")}, message_id="m-1",
                                     source_system="billing")

        dead_letter_id = pg_repository.store_dead_letter(message, "Unknown event type: INVOICE_PAID")

        rows = db_pool.execute_query("SELECT * FROM dead_letter_message WHERE id = %s", (dead_letter_id,))
        assert rows[0]["fingerprint"] == "billing:m-1"
        assert rows[0]["payload"] == {"amount": "10.00"}
