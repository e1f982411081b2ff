"""
ValidationResult model representing the outcome of validating a record.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class ErrorCode(str, Enum):
    """Symbolic codes carried by failed outcomes."""

    FIELD_REQUIRED = "FIELD_REQUIRED"
    FIELD_INVALID = "FIELD_INVALID"
    TAXID_INVALID = "TAXID_INVALID"
    EMAIL_INVALID = "EMAIL_INVALID"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    TRANSFORM_ERROR = "TRANSFORM_ERROR"
    PROMOTION_REJECTED = "PROMOTION_REJECTED"
    DUPLICATE_IN_SESSION = "DUPLICATE_IN_SESSION"
    UNROUTABLE_MESSAGE = "UNROUTABLE_MESSAGE"
    PARTIAL_AGGREGATION = "PARTIAL_AGGREGATION"
    HANDLER_FAILED = "HANDLER_FAILED"
    RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"


class ValidationResult(BaseModel):
    """
    Outcome of validating or promoting a single record.

    Either a success marker or exactly one failure. Records are validated
    first-failure-wins, so a failed result never carries a list of errors.

    Attributes:
        valid: Whether the record passed
        error_code: Short symbolic code (None on success)
        error_message: Human readable message (None on success)
        field_name: Offending field; None for record-level errors
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "valid": False,
                "error_code": "ILLEGAL_TRANSITION",
                "error_message": "Cannot move contract from CANCELLED to ACTIVE",
                "field_name": "targetStatus",
            }
        },
    )

    valid: bool
    error_code: str | None = None
    error_message: str | None = None
    field_name: str | None = None

    @model_validator(mode="after")
    def check_code_consistency(self) -> "ValidationResult":
        """A failure must carry a code, a success must not."""
        if self.valid and self.error_code is not None:
            raise ValueError("valid=True but error_code is set")
        if not self.valid and not self.error_code:
            raise ValueError("valid=False requires an error_code")
        return self

    @classmethod
    def success(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def error(
        cls,
        code: "ErrorCode | str",
        message: str,
        field: str | None = None,
    ) -> "ValidationResult":
        code_value = code.value if isinstance(code, ErrorCode) else code
        return cls(valid=False, error_code=code_value, error_message=message, field_name=field)
