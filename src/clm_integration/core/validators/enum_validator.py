"""
EnumValidator - validates that a field holds one of a closed set of values.
"""

from typing import Any

from .base_validator import BaseValidator


class EnumValidator(BaseValidator):
    """
    Parameters:
    - values: Allowed values
    - case_sensitive: Compare strings exactly (default False)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        values = self.parameters.get("values")
        if not values:
            raise ValueError("EnumValidator requires 'values' parameter")

        self.case_sensitive = self.parameters.get("case_sensitive", False)
        self.allowed = {self._normalize(v) for v in values}
        self.display = ", ".join(str(v) for v in values)

    def _normalize(self, value: Any) -> Any:
        if isinstance(value, str) and not self.case_sensitive:
            return value.strip().upper()
        return value

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if value is None:
            return

        if self._normalize(value) not in self.allowed:
            raise self.fail(f"Value '{value}' is not one of: {self.display}")

    @property
    def rule_type(self) -> str:
        return "enum"
