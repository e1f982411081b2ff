"""
TypeValidator - validates that a field value has (or coerces to) the expected type.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from .base_validator import BaseValidator


class TypeValidator(BaseValidator):
    """
    Validates that a field matches the expected type.

    Supports optional type coercion (e.g., "100" -> 100 for integer). Values
    that only coerce lossily, such as "99.5" for an integer, are rejected.

    Supported types:
    - integer, decimal, string, boolean, date (ISO-8601 yyyy-mm-dd)
    """

    TYPE_ALIASES = {
        "integer": "integer",
        "int": "integer",
        "decimal": "decimal",
        "float": "decimal",
        "double": "decimal",
        "string": "string",
        "str": "string",
        "boolean": "boolean",
        "bool": "boolean",
        "date": "date",
    }

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        expected_type = self.parameters.get("expected_type")
        if not expected_type:
            raise ValueError("TypeValidator requires 'expected_type' parameter")

        self.expected_type = self.TYPE_ALIASES.get(str(expected_type).lower())
        if not self.expected_type:
            raise ValueError(f"Unsupported type: {expected_type}")

        self.coerce = self.parameters.get("coerce", True)

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        # None is the required_field validator's concern
        if value is None:
            return

        if self._is_instance(value):
            return

        if not self.coerce:
            raise self.fail(f"Expected {self.expected_type}, got {type(value).__name__}")

        try:
            coerce_value(self.expected_type, value)
        except (ValueError, TypeError, InvalidOperation) as e:
            raise self.fail(f"Cannot coerce {type(value).__name__} to {self.expected_type}: {e}")

    def _is_instance(self, value: Any) -> bool:
        if self.expected_type == "integer":
            return isinstance(value, int) and not isinstance(value, bool)
        if self.expected_type == "decimal":
            return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)
        if self.expected_type == "string":
            return isinstance(value, str)
        if self.expected_type == "boolean":
            return isinstance(value, bool)
        return isinstance(value, date)

    @property
    def rule_type(self) -> str:
        return "type_check"


def coerce_value(expected_type: str, value: Any) -> Any:
    """
    Coerce value to one of the supported type names.

    Raises:
        ValueError: If the value cannot be represented exactly
    """
    if expected_type == "integer":
        if isinstance(value, bool):
            raise ValueError("boolean is not an integer")
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError(f"{value} is not a whole number")
            return int(value)
        return int(str(value).strip())

    if expected_type == "decimal":
        if isinstance(value, bool):
            raise ValueError("boolean is not a decimal")
        result = Decimal(str(value).strip())
        if not result.is_finite():
            raise ValueError(f"{value} is not a finite number")
        return result

    if expected_type == "boolean":
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "1", "yes"):
                return True
            if lowered in ("false", "0", "no"):
                return False
            raise ValueError(f"Cannot parse '{value}' as boolean")
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise ValueError(f"Cannot parse {value!r} as boolean")

    if expected_type == "date":
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value).strip())

    return str(value)
