"""
Transform/validate stage: turns a staged record into a validated draft or
exactly one failure.

Steps run in a fixed order and stop at the first failure:

1. shape rules on the raw fields (presence, types, formats)
2. mapping into a ContractDraft or CustomerDraft
3. domain rules (tax id, email, date range, company tax id)
4. contract lifecycle check when the record asserts a target status
"""

from pathlib import Path
from typing import Any

from clm_integration.config.settings import EtlSettings
from clm_integration.core.models import (
    ContractDraft,
    CustomerDraft,
    CustomerType,
    EntityKind,
    ErrorCode,
    StagedRecord,
    ValidationResult,
)
from clm_integration.core.result import Err, Ok, Result
from clm_integration.core.rules import RuleConfigLoader, RuleEngine, default_rules, split_phases
from clm_integration.core.state_machine import ContractStatus, can_transition
from clm_integration.core.validators import coerce_value
from clm_integration.core.validators.tax_id_validator import normalize_tax_id
from clm_integration.observability.logger import get_logger

logger = get_logger(__name__)

Draft = ContractDraft | CustomerDraft


def blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def text(fields: dict[str, Any], name: str) -> str | None:
    value = fields.get(name)
    if blank(value):
        return None
    return str(value).strip()


def typed(fields: dict[str, Any], name: str, expected_type: str) -> Any:
    value = fields.get(name)
    if blank(value):
        return None
    return coerce_value(expected_type, value)


def asserted_status(fields: dict[str, Any]) -> ContractStatus | None:
    """The target status a contract record asserts, if any."""
    value = fields.get("targetStatus")
    if blank(value):
        return None
    return ContractStatus.parse(value)


def map_contract(fields: dict[str, Any], default_tenant: str) -> ContractDraft:
    current = text(fields, "currentStatus")
    return ContractDraft(
        tenant_id=text(fields, "tenantId") or default_tenant,
        contract_number=text(fields, "contractNumber"),
        customer_id=typed(fields, "customerId", "integer"),
        status=asserted_status(fields) or ContractStatus.DRAFT,
        id=typed(fields, "id", "integer"),
        current_status=ContractStatus.parse(current) if current else None,
        contract_type=text(fields, "contractType"),
        start_date=typed(fields, "startDate", "date"),
        end_date=typed(fields, "endDate", "date"),
        duration_months=typed(fields, "durationMonths", "integer"),
        auto_renew=typed(fields, "autoRenew", "boolean") or False,
        total_value=typed(fields, "totalValue", "decimal"),
        payment_terms=text(fields, "paymentTerms"),
        billing_cycle=text(fields, "billingCycle"),
        notes=text(fields, "notes"),
    )


def map_customer(fields: dict[str, Any], default_tenant: str) -> CustomerDraft:
    customer_type = text(fields, "customerType")
    tax_id = text(fields, "taxId")
    active = typed(fields, "active", "boolean")
    return CustomerDraft(
        tenant_id=text(fields, "tenantId") or default_tenant,
        customer_code=text(fields, "customerCode"),
        name=text(fields, "name"),
        customer_type=CustomerType(customer_type.upper()) if customer_type else CustomerType.INDIVIDUAL,
        id=typed(fields, "id", "integer"),
        trade_name=text(fields, "tradeName"),
        tax_id=normalize_tax_id(tax_id) if tax_id else None,
        email=text(fields, "email"),
        phone=text(fields, "phone"),
        address_street=text(fields, "addressStreet"),
        address_city=text(fields, "addressCity"),
        address_state=text(fields, "addressState"),
        address_zip=text(fields, "addressZip"),
        address_country=text(fields, "addressCountry"),
        active=True if active is None else active,
    )


MAPPERS = {
    EntityKind.CONTRACT: map_contract,
    EntityKind.CUSTOMER: map_customer,
}


class TransformValidateStage:
    """
    Pure per-record processing. Holds no per-record state, so one instance
    is shared by all worker threads of a session.
    """

    def __init__(
        self,
        entity_kind: EntityKind,
        shape_rules: list[dict[str, Any]] | None = None,
        domain_rules: list[dict[str, Any]] | None = None,
        default_tenant: str = "DEFAULT",
    ):
        self.entity_kind = entity_kind
        if shape_rules is None or domain_rules is None:
            default_shape, default_domain = split_phases(default_rules(entity_kind))
            shape_rules = default_shape if shape_rules is None else shape_rules
            domain_rules = default_domain if domain_rules is None else domain_rules
        self.shape_engine = RuleEngine(shape_rules)
        self.domain_engine = RuleEngine(domain_rules)
        self.default_tenant = default_tenant
        self.mapper = MAPPERS[entity_kind]

    @classmethod
    def from_settings(cls, entity_kind: EntityKind, settings: EtlSettings) -> "TransformValidateStage":
        """
        Build a stage for an entity kind.

        Rules come from <rules_path>/<entity_kind>.yaml when that file
        exists, otherwise the built-in defaults apply.
        """
        if settings.rules_path:
            rules_file = Path(settings.rules_path) / f"{entity_kind.value}.yaml"
            if rules_file.exists():
                shape, domain = RuleConfigLoader(rules_file).load_phases()
                logger.info(
                    "Loaded validation rules from file",
                    extra={"entity_kind": entity_kind.value, "rules_file": str(rules_file)},
                )
                return cls(entity_kind, shape, domain, settings.default_tenant)
        return cls(entity_kind, default_tenant=settings.default_tenant)

    def transform(self, record: StagedRecord) -> Result:
        """Shape checks and mapping. Ok(draft) or Err(failure)."""
        return Ok(record).bind(self._check_shape).bind(self._map)

    def validate(self, record: StagedRecord, draft: Draft) -> Result:
        """Domain rules and lifecycle check on a mapped draft."""
        return (
            Ok(draft)
            .bind(lambda d: self._check_domain(record, d))
            .bind(lambda d: self._check_transition(record, d))
        )

    def process(self, record: StagedRecord) -> Result:
        return self.transform(record).bind(lambda draft: self.validate(record, draft))

    def _check_shape(self, record: StagedRecord) -> Result:
        try:
            result = self.shape_engine.validate(record.fields, record_ref=self._ref(record))
        except Exception as e:
            return self._unexpected(record, "shape validation", e)
        return Ok(record) if result.valid else Err(result)

    def _map(self, record: StagedRecord) -> Result:
        try:
            return Ok(self.mapper(record.fields, self.default_tenant))
        except Exception as e:
            return self._unexpected(record, "mapping", e)

    def _check_domain(self, record: StagedRecord, draft: Draft) -> Result:
        try:
            result = self.domain_engine.validate(record.fields, record_ref=self._ref(record))
        except Exception as e:
            return self._unexpected(record, "domain validation", e)
        return Ok(draft) if result.valid else Err(result)

    def _check_transition(self, record: StagedRecord, draft: Draft) -> Result:
        if not isinstance(draft, ContractDraft):
            return Ok(draft)

        try:
            target = asserted_status(record.fields)
        except ValueError as e:
            return Err(ValidationResult.error(ErrorCode.FIELD_INVALID, str(e), "targetStatus"))
        if target is None:
            return Ok(draft)

        current = draft.current_status
        if current is None:
            if not draft.is_create():
                # Only the persisted status is known; promotion checks it
                return Ok(draft)
            if target is ContractStatus.DRAFT:
                return Ok(draft)
            current = ContractStatus.DRAFT

        if not can_transition(current, target):
            return Err(ValidationResult.error(
                ErrorCode.ILLEGAL_TRANSITION,
                f"Cannot move contract from {current.value} to {target.value}",
                "targetStatus",
            ))
        return Ok(draft)

    def _unexpected(self, record: StagedRecord, step: str, error: Exception) -> Err:
        logger.warning(
            f"Unexpected failure during {step}",
            extra={
                "session_id": record.session_id,
                "sequence": record.sequence,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )
        return Err(ValidationResult.error(ErrorCode.TRANSFORM_ERROR, f"{step} failed: {error}"))

    @staticmethod
    def _ref(record: StagedRecord) -> str:
        return f"{record.session_id}#{record.sequence}"
