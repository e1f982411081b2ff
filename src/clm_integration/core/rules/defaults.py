"""
Built-in rule sets for each entity kind.
"""

from typing import Any

from clm_integration.core.models import CustomerType, EntityKind
from clm_integration.core.state_machine import ContractStatus

from .rule_config import RuleConfigBuilder

STATUS_NAMES = [status.value for status in ContractStatus]
CUSTOMER_TYPES = [kind.value for kind in CustomerType]
CODE_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_./-]{0,49}$"


def contract_rules() -> list[dict[str, Any]]:
    return (
        RuleConfigBuilder()
        .add_required_field("contractNumber")
        .add_regex("contractNumber", CODE_PATTERN)
        .add_required_field("customerId")
        .add_type_check("customerId", "integer")
        .add_range("customerId", min_value=1)
        .add_type_check("id", "integer")
        .add_range("id", min_value=1)
        .add_enum("targetStatus", STATUS_NAMES)
        .add_enum("currentStatus", STATUS_NAMES)
        .add_type_check("startDate", "date")
        .add_type_check("endDate", "date")
        .add_type_check("durationMonths", "integer")
        .add_range("durationMonths", min_value=0)
        .add_type_check("autoRenew", "boolean")
        .add_type_check("totalValue", "decimal")
        .add_range("totalValue", min_value=0)
        .add_date_range("endDate", start_field="startDate")
        .build()
    )


def customer_rules() -> list[dict[str, Any]]:
    return (
        RuleConfigBuilder()
        .add_required_field("customerCode")
        .add_regex("customerCode", CODE_PATTERN)
        .add_required_field("name")
        .add_enum("customerType", CUSTOMER_TYPES)
        .add_type_check("id", "integer")
        .add_type_check("active", "boolean")
        .add_required_field("taxId", when={"field": "customerType", "equals": "COMPANY"}, phase="domain")
        .add_tax_id("taxId")
        .add_email("email")
        .build()
    )


def default_rules(entity_kind: EntityKind) -> list[dict[str, Any]]:
    if entity_kind is EntityKind.CONTRACT:
        return contract_rules()
    return customer_rules()
