"""
RangeValidator - validates numeric values are within a specified range.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from .base_validator import BaseValidator


class RangeValidator(BaseValidator):
    """
    Validates that a numeric field is within a specified range.

    Numeric strings are compared by their decimal value.

    Parameters:
    - min: Minimum value (inclusive)
    - max: Maximum value (inclusive)
    - min_exclusive: Minimum value (exclusive)
    - max_exclusive: Maximum value (exclusive)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        self.min_value = self._bound("min")
        self.max_value = self._bound("max")
        self.min_exclusive = self._bound("min_exclusive")
        self.max_exclusive = self._bound("max_exclusive")

        if all(v is None for v in [self.min_value, self.max_value, self.min_exclusive, self.max_exclusive]):
            raise ValueError("RangeValidator requires at least one of: min, max, min_exclusive, max_exclusive")

    def _bound(self, key: str) -> Decimal | None:
        raw = self.parameters.get(key)
        return None if raw is None else Decimal(str(raw))

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if value is None:
            return

        if isinstance(value, bool):
            raise self.fail("Value must be numeric, got bool")
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            raise self.fail(f"Value must be numeric, got {type(value).__name__}")

        if self.min_value is not None and number < self.min_value:
            raise self.fail(f"Value {value} is less than minimum {self.min_value}")

        if self.min_exclusive is not None and number <= self.min_exclusive:
            raise self.fail(f"Value {value} must be greater than {self.min_exclusive}")

        if self.max_value is not None and number > self.max_value:
            raise self.fail(f"Value {value} exceeds maximum {self.max_value}")

        if self.max_exclusive is not None and number >= self.max_exclusive:
            raise self.fail(f"Value {value} must be less than {self.max_exclusive}")

    @property
    def rule_type(self) -> str:
        return "range"
