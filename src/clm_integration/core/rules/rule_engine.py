"""
Rule engine for applying validation rules to staged record payloads.

Rules run in configuration order and the first error-severity failure wins:
a record is either fully valid or carries exactly one reported failure.
"""

from typing import Any

from clm_integration.core.models import ValidationResult
from clm_integration.core.validators import (
    BaseValidator,
    DateRangeValidator,
    EmailValidator,
    EnumValidator,
    RangeValidator,
    RegexValidator,
    RequiredFieldValidator,
    TaxIdValidator,
    TypeValidator,
    ValidationError,
)
from clm_integration.observability.logger import get_logger

logger = get_logger(__name__)


class RuleEngine:
    """
    Orchestrates validation rules on record payloads.

    Warning-severity rules never fail a record; their failures are logged.
    """

    VALIDATOR_REGISTRY = {
        "required_field": RequiredFieldValidator,
        "type_check": TypeValidator,
        "range": RangeValidator,
        "regex": RegexValidator,
        "enum": EnumValidator,
        "tax_id": TaxIdValidator,
        "email": EmailValidator,
        "date_range": DateRangeValidator,
    }

    def __init__(self, rules: list[dict[str, Any]]):
        """
        Initialize the rule engine with validation rules.

        Args:
            rules: List of rule configurations, each containing:
                   - rule_name: str
                   - rule_type: str (a VALIDATOR_REGISTRY key)
                   - field_name: str
                   - parameters: Dict[str, Any] (optional)
                   - severity: str (error or warning)
                   - enabled: bool (default True)
        """
        self.rules = rules
        self.validators: list[tuple[str, str, BaseValidator]] = []
        self._build_validators()

    def _build_validators(self) -> None:
        for rule in self.rules:
            if not rule.get("enabled", True):
                continue

            rule_name = rule["rule_name"]
            rule_type = rule["rule_type"]
            field_name = rule["field_name"]
            parameters = rule.get("parameters") or {}
            severity = rule.get("severity", "error")

            validator_class = self.VALIDATOR_REGISTRY.get(rule_type)
            if not validator_class:
                raise ValueError(f"Unknown rule type: {rule_type}")

            try:
                validator = validator_class(field_name, parameters)
            except (ValueError, KeyError, TypeError) as e:
                raise ValueError(f"Failed to create validator for rule '{rule_name}': {e}") from e
            self.validators.append((rule_name, severity, validator))

    def validate(self, payload: dict[str, Any], record_ref: str | None = None) -> ValidationResult:
        """
        Validate a payload against all rules, stopping at the first error.

        Args:
            payload: Field name to value mapping
            record_ref: Identifier used in log lines

        Returns:
            ValidationResult.success() or the first failure
        """
        for rule_name, severity, validator in self.validators:
            value = payload.get(validator.field_name)
            try:
                validator.validate(value, payload)
            except ValidationError as e:
                if severity == "error":
                    return ValidationResult.error(e.code, e.message, e.field_name)
                logger.warning(
                    f"Validation warning from rule '{rule_name}'",
                    extra={"rule_name": rule_name, "record": record_ref, "field_name": e.field_name},
                )

        return ValidationResult.success()

    def get_rule_summary(self) -> dict[str, Any]:
        return {
            "total_rules": len(self.validators),
            "rules_by_type": self._count_by_type(),
            "rules_by_severity": self._count_by_severity(),
        }

    def _count_by_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for _, _, validator in self.validators:
            rule_type = validator.rule_type
            counts[rule_type] = counts.get(rule_type, 0) + 1
        return counts

    def _count_by_severity(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for _, severity, _ in self.validators:
            counts[severity] = counts.get(severity, 0) + 1
        return counts
