"""
Contract lifecycle state machine.

The transition table below is the single source of truth for which contract
status changes are legal. Every caller (transform/validate stage, promotion
stage, event handlers) goes through can_transition().
"""

from enum import Enum

from clm_integration.core.errors import TransitionTableError


class ContractStatus(str, Enum):
    """Lifecycle states of a contract."""

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"

    def can_transition_to(self, target: "ContractStatus") -> bool:
        """Check if a transition from this status to target is legal."""
        return can_transition(self, target)

    @classmethod
    def parse(cls, value: "str | ContractStatus") -> "ContractStatus":
        """Parse a status name case-insensitively."""
        if isinstance(value, ContractStatus):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Contract status must be a string, got {type(value).__name__}")
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"Invalid contract status: {value}") from None


TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    ContractStatus.DRAFT: frozenset({ContractStatus.PENDING, ContractStatus.CANCELLED}),
    ContractStatus.PENDING: frozenset(
        {ContractStatus.ACTIVE, ContractStatus.CANCELLED, ContractStatus.DRAFT}
    ),
    ContractStatus.ACTIVE: frozenset(
        {ContractStatus.SUSPENDED, ContractStatus.CANCELLED, ContractStatus.COMPLETED}
    ),
    ContractStatus.SUSPENDED: frozenset({ContractStatus.ACTIVE, ContractStatus.CANCELLED}),
    ContractStatus.CANCELLED: frozenset(),
    ContractStatus.COMPLETED: frozenset(),
}


def validate_transition_table(table: dict[ContractStatus, frozenset[ContractStatus]]) -> None:
    """
    Check that a transition table is total and well formed.

    Raises:
        TransitionTableError: If the table is incomplete or malformed
    """
    missing = [status.value for status in ContractStatus if status not in table]
    if missing:
        raise TransitionTableError(f"Transition table has no entry for: {', '.join(missing)}")

    for source, targets in table.items():
        if not isinstance(source, ContractStatus):
            raise TransitionTableError(f"Unknown source status in transition table: {source!r}")
        for target in targets:
            if not isinstance(target, ContractStatus):
                raise TransitionTableError(f"Unknown target status {target!r} for {source.value}")
            if target is source:
                raise TransitionTableError(f"Self-transition declared for {source.value}")


validate_transition_table(TRANSITIONS)


def can_transition(from_status: ContractStatus, to_status: ContractStatus) -> bool:
    """
    Answer whether a contract may move from one status to another.

    Pure and total over ContractStatus x ContractStatus. A transition from a
    status to itself is never legal.
    """
    return to_status in TRANSITIONS[from_status]


def allowed_targets(status: ContractStatus) -> frozenset[ContractStatus]:
    """Return the statuses reachable in one step from status."""
    return TRANSITIONS[status]


def is_terminal(status: ContractStatus) -> bool:
    """Terminal statuses have no outgoing transitions."""
    return not TRANSITIONS[status]
