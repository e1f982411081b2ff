"""
ContractDraft model: immutable value threaded through the ETL stages.
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from clm_integration.core.state_machine import ContractStatus


class ContractDraft(BaseModel):
    """
    A contract as produced by the transform stage.

    Drafts never change in place: with_status() and with_id() return new
    values. Two drafts are equal when they share tenant and contract number,
    whatever their other attributes.

    Attributes:
        tenant_id: Owning tenant
        contract_number: Natural key within the tenant
        customer_id: Referenced customer
        status: Status the record asserts (DRAFT when none is asserted)
        id: Surrogate id; None before the first promotion
        current_status: Status the source claims is currently persisted
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "tenant_id": "DEFAULT",
                "contract_number": "CNT-001",
                "customer_id": 100,
                "status": "PENDING",
                "id": None,
            }
        },
    )

    tenant_id: str = Field(..., min_length=1)
    contract_number: str = Field(..., min_length=1)
    customer_id: int
    status: ContractStatus = ContractStatus.DRAFT
    id: int | None = None
    current_status: ContractStatus | None = None
    contract_type: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    duration_months: int | None = Field(None, ge=0)
    auto_renew: bool = False
    total_value: Decimal | None = None
    payment_terms: str | None = None
    billing_cycle: str | None = None
    notes: str | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ContractDraft):
            return NotImplemented
        return self.natural_key() == other.natural_key()

    def __hash__(self) -> int:
        return hash(self.natural_key())

    def natural_key(self) -> tuple[str, str]:
        return (self.tenant_id, self.contract_number)

    def with_status(self, status: ContractStatus) -> "ContractDraft":
        return self.model_copy(update={"status": ContractStatus.parse(status)})

    def with_id(self, new_id: int) -> "ContractDraft":
        return self.model_copy(update={"id": new_id})

    def is_create(self) -> bool:
        return self.id is None

    def is_active(self) -> bool:
        return self.status is ContractStatus.ACTIVE

    def is_modifiable(self) -> bool:
        return self.status in (ContractStatus.DRAFT, ContractStatus.PENDING)
