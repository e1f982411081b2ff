"""
DateRangeValidator - checks that an end date falls after a start date.
"""

from typing import Any

from clm_integration.core.models.validation_result import ErrorCode

from .base_validator import BaseValidator
from .type_validator import coerce_value


class DateRangeValidator(BaseValidator):
    """
    Applied to the end-date field.

    Parameters:
    - start_field: Name of the start-date field (required)
    """

    error_code = ErrorCode.INVALID_DATE_RANGE

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.start_field = self.parameters.get("start_field")
        if not self.start_field:
            raise ValueError("DateRangeValidator requires 'start_field' parameter")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        start = record.get(self.start_field)
        if value is None or start is None:
            return

        # Shape rules run first, so both values already parse as dates
        end_date = coerce_value("date", value)
        start_date = coerce_value("date", start)
        if end_date <= start_date:
            raise self.fail(f"End date {end_date} must be after start date {start_date}")

    @property
    def rule_type(self) -> str:
        return "date_range"
