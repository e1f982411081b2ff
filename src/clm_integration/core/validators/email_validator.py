"""
EmailValidator - validates e-mail address format.
"""

import re
from typing import Any

from clm_integration.core.models.validation_result import ErrorCode

from .base_validator import BaseValidator

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+$")


class EmailValidator(BaseValidator):
    """Blank values pass; presence is the required_field validator's concern."""

    error_code = ErrorCode.EMAIL_INVALID

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if value is None or (isinstance(value, str) and not value.strip()):
            return

        if not isinstance(value, str) or not EMAIL_PATTERN.match(value.strip()):
            raise self.fail("Invalid email format")

    @property
    def rule_type(self) -> str:
        return "email"
