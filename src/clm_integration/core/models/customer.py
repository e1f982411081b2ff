"""
CustomerDraft model for the customer entity kind.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CustomerType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    COMPANY = "COMPANY"


def mask(value: str | None) -> str:
    """Keep only the last four characters of a sensitive value."""
    if value is None or len(value) <= 4:
        return "****"
    return "****" + value[-4:]


def mask_email(value: str | None) -> str:
    if not value or not value.strip():
        return "****"
    at_index = value.find("@")
    if at_index <= 1:
        return "****"
    return value[0] + "***" + value[at_index:]


class CustomerDraft(BaseModel):
    """
    A customer as produced by the transform stage.

    Equality by (tenant_id, customer_code). Tax id and email are masked in
    repr so drafts can be logged safely.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(..., min_length=1)
    customer_code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    customer_type: CustomerType = CustomerType.INDIVIDUAL
    id: int | None = None
    trade_name: str | None = None
    tax_id: str | None = None
    email: str | None = None
    phone: str | None = None
    address_street: str | None = None
    address_city: str | None = None
    address_state: str | None = None
    address_zip: str | None = None
    address_country: str | None = None
    active: bool = True

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CustomerDraft):
            return NotImplemented
        return self.natural_key() == other.natural_key()

    def __hash__(self) -> int:
        return hash(self.natural_key())

    def __repr__(self) -> str:
        return (
            f"CustomerDraft(id={self.id}, tenant_id={self.tenant_id}, "
            f"customer_code={self.customer_code}, customer_type={self.customer_type.value}, "
            f"name={self.name}, tax_id={mask(self.tax_id)}, email={mask_email(self.email)}, "
            f"active={self.active})"
        )

    __str__ = __repr__

    def natural_key(self) -> tuple[str, str]:
        return (self.tenant_id, self.customer_code)

    def with_id(self, new_id: int) -> "CustomerDraft":
        return self.model_copy(update={"id": new_id})

    def deactivate(self) -> "CustomerDraft":
        return self.model_copy(update={"active": False})
