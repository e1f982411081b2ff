"""
RequiredFieldValidator - ensures a field is present and not null/empty.
"""

from typing import Any

from clm_integration.core.models.validation_result import ErrorCode

from .base_validator import BaseValidator


class RequiredFieldValidator(BaseValidator):
    """
    Validates that a required field is present and not null/empty.

    Fails if:
    - Field is missing from the record
    - Field value is None
    - Field value is an empty string (configurable)

    Parameters:
    - allow_empty_string: accept "" and whitespace-only strings
    - when: only require the field when another field has a given value,
      e.g. {"field": "customerType", "equals": "COMPANY"}
    """

    error_code = ErrorCode.FIELD_REQUIRED

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.allow_empty_string = self.parameters.get("allow_empty_string", False)
        self.when = self.parameters.get("when")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if self.when and not self._condition_holds(record):
            return

        if self.field_name not in record:
            raise self.fail("Field is missing from record")

        if value is None:
            raise self.fail("Field value is null")

        if not self.allow_empty_string and isinstance(value, str) and value.strip() == "":
            raise self.fail("Field value is empty string")

    def _condition_holds(self, record: dict[str, Any]) -> bool:
        actual = record.get(self.when["field"])
        expected = self.when["equals"]
        if isinstance(actual, str) and isinstance(expected, str):
            return actual.strip().upper() == expected.upper()
        return actual == expected

    @property
    def rule_type(self) -> str:
        return "required_field"
