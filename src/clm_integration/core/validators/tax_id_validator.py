"""
TaxIdValidator - validates Brazilian CPF (individual) and CNPJ (company) tax ids.
"""

import re
from typing import Any

from clm_integration.core.models.validation_result import ErrorCode

from .base_validator import BaseValidator

CPF_LENGTH = 11
CNPJ_LENGTH = 14
CNPJ_WEIGHTS_FIRST = (5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
CNPJ_WEIGHTS_SECOND = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)


def normalize_tax_id(value: str) -> str:
    """Strip the usual CPF/CNPJ punctuation (dots, dashes, slashes, spaces)."""
    return re.sub(r"[.\-/\s]", "", value)


def is_valid_cpf(digits: str) -> bool:
    if len(digits) != CPF_LENGTH or not digits.isdigit() or len(set(digits)) == 1:
        return False
    numbers = [int(d) for d in digits]
    for position in (9, 10):
        total = sum(numbers[i] * (position + 1 - i) for i in range(position))
        check = total * 10 % 11 % 10
        if check != numbers[position]:
            return False
    return True


def is_valid_cnpj(digits: str) -> bool:
    if len(digits) != CNPJ_LENGTH or not digits.isdigit() or len(set(digits)) == 1:
        return False
    numbers = [int(d) for d in digits]
    for position, weights in ((12, CNPJ_WEIGHTS_FIRST), (13, CNPJ_WEIGHTS_SECOND)):
        remainder = sum(n * w for n, w in zip(numbers[:position], weights)) % 11
        check = 0 if remainder < 2 else 11 - remainder
        if check != numbers[position]:
            return False
    return True


class TaxIdValidator(BaseValidator):
    """
    Validates a tax id according to the record's customer type.

    INDIVIDUAL customers need a valid CPF, COMPANY customers a valid CNPJ.
    When the type is absent either form is accepted.

    Parameters:
    - customer_type_field: Field holding the customer type (default "customerType")
    """

    error_code = ErrorCode.TAXID_INVALID

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.customer_type_field = self.parameters.get("customer_type_field", "customerType")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        if value is None or (isinstance(value, str) and not value.strip()):
            return

        digits = normalize_tax_id(str(value))
        customer_type = str(record.get(self.customer_type_field) or "").strip().upper()

        if customer_type == "COMPANY":
            if not is_valid_cnpj(digits):
                raise self.fail("Tax id is not a valid CNPJ")
        elif customer_type == "INDIVIDUAL":
            if not is_valid_cpf(digits):
                raise self.fail("Tax id is not a valid CPF")
        elif not (is_valid_cpf(digits) or is_valid_cnpj(digits)):
            raise self.fail("Tax id is neither a valid CPF nor a valid CNPJ")

    @property
    def rule_type(self) -> str:
        return "tax_id"
