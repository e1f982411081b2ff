"""
Unit tests for caller input validation and the service facade's input checks.
"""

import pytest

from clm_integration.core.models import EntityKind
from clm_integration.utils.validation import (
    InputValidationError,
    validate_entity_kind,
    validate_identifier,
    validate_records,
    validate_session_id,
    validate_source_system,
)


@pytest.mark.unit
class TestValidationUtilities:
    """Test the input validation utilities."""

    def test_validate_identifier_valid(self):
        """Test valid identifiers."""
        assert validate_identifier("crm-prod") == "crm-prod"
        assert validate_identifier("erp_2") == "erp_2"
        assert validate_identifier("sap.eu") == "sap.eu"
        assert validate_identifier("  spaces  ") == "spaces"  # Strips whitespace

    def test_validate_identifier_invalid(self):
        """Test invalid identifiers."""
        with pytest.raises(InputValidationError, match="must be a non-empty string"):
            validate_identifier("")

        with pytest.raises(InputValidationError, match="cannot be empty"):
            validate_identifier("   ")

        with pytest.raises(InputValidationError, match="invalid characters"):
            validate_identifier("invalid id!")

        with pytest.raises(InputValidationError, match="invalid characters"):
            validate_identifier("crm'; DROP TABLE--")

        with pytest.raises(InputValidationError, match="maximum length"):
            validate_identifier("a" * 256)

    def test_validate_source_system_names_field(self):
        with pytest.raises(InputValidationError, match="source_system"):
            validate_source_system(None)

    def test_validate_session_id(self):
        session_id = "0123456789abcdef0123456789abcdef"
        assert validate_session_id(session_id) == session_id

        with pytest.raises(InputValidationError, match="not a valid session id"):
            validate_session_id("session-1")

    def test_validate_entity_kind(self):
        assert validate_entity_kind("Contract") is EntityKind.CONTRACT
        assert validate_entity_kind(EntityKind.CUSTOMER) is EntityKind.CUSTOMER

        with pytest.raises(InputValidationError, match="contract, customer"):
            validate_entity_kind("invoice")

    def test_validate_records(self):
        records = [{"contractNumber": "CNT-001"}]
        assert validate_records(records) is records

        with pytest.raises(InputValidationError, match="must be a list"):
            validate_records({"contractNumber": "CNT-001"})

        with pytest.raises(InputValidationError, match=r"records\[1\]"):
            validate_records([{}, "row"])

        with pytest.raises(InputValidationError, match="maximum batch size"):
            validate_records([{}, {}], max_records=1)

    def test_input_error_is_a_value_error(self):
        assert issubclass(InputValidationError, ValueError)


@pytest.mark.unit
class TestServiceInputs:
    """Tests for malformed input reaching the service facade"""

    def test_malformed_message_dict(self, service):
        with pytest.raises(InputValidationError, match="Malformed"):
            service.submit_integration_message({"eventType": "CUSTOMER_CREATED"})

    def test_blank_tenant_rejected(self, service):
        with pytest.raises(InputValidationError):
            service.submit_integration_message({
                "eventType": "CUSTOMER_CREATED",
                "tenantId": "",
                "correlationId": "c-1",
            })

    def test_open_session_with_bad_entity(self, service):
        with pytest.raises(InputValidationError):
            service.open_session("crm", "invoice", [])
