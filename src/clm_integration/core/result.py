"""
Result type for error-as-value composition.

Each pipeline step takes a value and returns Ok(new_value) or Err(failure).
bind() applies the next step only while the chain is still Ok, so the first
failure short-circuits everything after it.
"""

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

from clm_integration.core.models.validation_result import ValidationResult

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def bind(self, step: "Callable[[T], Result[U]]") -> "Result[U]":
        return step(self.value)

    def map(self, fn: Callable[[T], U]) -> "Result[U]":
        return Ok(fn(self.value))

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: ValidationResult

    @property
    def is_ok(self) -> bool:
        return False

    def bind(self, step: Callable[[Any], Any]) -> "Err":
        return self

    def map(self, fn: Callable[[Any], Any]) -> "Err":
        return self

    def unwrap(self) -> Any:
        raise ValueError(f"Called unwrap() on Err: {self.error.error_code}")


Result = Union[Ok[T], Err]
