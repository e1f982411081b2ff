"""
Input validation utilities for caller-supplied identifiers.

Used at the edges (facade, CLI, session manager) before an id reaches the
database or a log line.
"""

import re

from clm_integration.core.models import EntityKind

MAX_ID_LENGTH = 255


class InputValidationError(ValueError):
    """Raised when input validation fails."""
    pass


def validate_identifier(value: str, field_name: str = "identifier") -> str:
    """
    Validate a generic identifier.

    Identifiers must be non-empty strings containing only alphanumeric
    characters, hyphens, underscores, and dots.

    Returns:
        The identifier stripped of surrounding whitespace

    Raises:
        InputValidationError: If validation fails

    Examples:
        >>> validate_identifier("crm-prod")
        'crm-prod'
        >>> validate_identifier("bad id!")  # doctest: +SKIP
        InputValidationError: identifier contains invalid characters
    """
    if not value or not isinstance(value, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    value = value.strip()

    if not value:
        raise InputValidationError(f"{field_name} cannot be empty or whitespace-only")

    if not re.match(r'^[a-zA-Z0-9_\-\.]+$', value):
        raise InputValidationError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric, hyphens, underscores, and dots are allowed."
        )

    if len(value) > MAX_ID_LENGTH:
        raise InputValidationError(f"{field_name} exceeds maximum length of {MAX_ID_LENGTH} characters")

    return value


def validate_source_system(source_system: str, field_name: str = "source_system") -> str:
    return validate_identifier(source_system, field_name)


def validate_session_id(session_id: str, field_name: str = "session_id") -> str:
    """Session ids are uuid4 hex strings generated at open."""
    session_id = validate_identifier(session_id, field_name)
    if not re.match(r'^[0-9a-f]{32}$', session_id):
        raise InputValidationError(f"{field_name} is not a valid session id")
    return session_id


def validate_entity_kind(entity_kind: "str | EntityKind", field_name: str = "entity_kind") -> EntityKind:
    try:
        return EntityKind.parse(entity_kind)
    except ValueError:
        allowed = ", ".join(kind.value for kind in EntityKind)
        raise InputValidationError(f"{field_name} must be one of: {allowed}") from None


def validate_records(records: list, field_name: str = "records", max_records: int | None = None) -> list:
    """
    Validate a batch of raw records.

    Raises:
        InputValidationError: If records is not a list of mappings or exceeds max_records
    """
    if not isinstance(records, list):
        raise InputValidationError(f"{field_name} must be a list")

    for i, record in enumerate(records):
        if not isinstance(record, dict):
            raise InputValidationError(
                f"{field_name}[{i}] must be a mapping, got {type(record).__name__}"
            )

    if max_records is not None and len(records) > max_records:
        raise InputValidationError(
            f"{field_name} exceeds maximum batch size of {max_records} records"
        )

    return records
