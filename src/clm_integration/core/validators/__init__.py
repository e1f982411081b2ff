"""
Validation rule implementations.

Provides validators for required fields, type checking, ranges, regex patterns,
closed value sets, tax ids, e-mail addresses and date ranges.
"""

from .base_validator import BaseValidator, ValidationError
from .date_range_validator import DateRangeValidator
from .email_validator import EmailValidator
from .enum_validator import EnumValidator
from .range_validator import RangeValidator
from .regex_validator import RegexValidator
from .required_field_validator import RequiredFieldValidator
from .tax_id_validator import TaxIdValidator
from .type_validator import TypeValidator, coerce_value

__all__ = [
    "BaseValidator",
    "ValidationError",
    "RequiredFieldValidator",
    "TypeValidator",
    "RangeValidator",
    "RegexValidator",
    "EnumValidator",
    "TaxIdValidator",
    "EmailValidator",
    "DateRangeValidator",
    "coerce_value",
]
