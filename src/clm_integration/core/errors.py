"""
Exception hierarchy for the CLM integration pipeline.

Validation failures are values (ValidationResult), not exceptions. The classes
below cover the remaining categories:

- conflicts raised by the persistence layer (ConflictError)
- infrastructure faults that fail a session or a router call (InfrastructureError)
- programmer/configuration errors that are never retried (ConfigurationError)
"""


class ClmError(Exception):
    """Base class for all pipeline errors."""


class InfrastructureError(ClmError):
    """Retryable fault in a collaborator (database down, timeout)."""


class PersistenceError(InfrastructureError):
    """Raised when the backing store cannot complete an operation."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(f"[{operation}] {message}")


class ConflictError(ClmError):
    """Raised when a conditional write finds unexpected persisted state."""

    def __init__(self, message: str, expected: str | None = None, actual: str | None = None):
        self.message = message
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class ConfigurationError(ClmError):
    """Programmer or configuration error. Fatal, never retried."""


class TransitionTableError(ConfigurationError):
    """The contract transition table is not total or references unknown states."""


class UnroutableMessageError(ConfigurationError):
    """An integration message carries an event type with no route."""

    code = "UNROUTABLE_MESSAGE"

    def __init__(self, event_type: str, fingerprint: str):
        self.event_type = event_type
        self.fingerprint = fingerprint
        super().__init__(f"No route for event type '{event_type}' (fingerprint={fingerprint})")


class SessionNotFoundError(ClmError):
    """Raised when an ingestion session id is unknown."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Ingestion session not found: {session_id}")


class IllegalSessionTransitionError(ClmError):
    """Raised when an ingestion session is moved backwards or out of a terminal state."""

    def __init__(self, session_id: str, current: str, target: str):
        self.session_id = session_id
        self.current = current
        self.target = target
        super().__init__(f"Session {session_id} cannot move from {current} to {target}")


class IllegalTransitionError(ClmError):
    """Raised when an event reports a contract status change the lifecycle forbids."""

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Illegal contract status transition: {from_status} -> {to_status}")


class MessageHandlingError(ClmError):
    """Raised by the router when an event handler fails."""

    code = "HANDLER_FAILED"

    def __init__(self, event_type: str, fingerprint: str, message: str):
        self.event_type = event_type
        self.fingerprint = fingerprint
        self.message = message
        super().__init__(f"Handler for {event_type} failed (fingerprint={fingerprint}): {message}")
