"""Result type shared by the security classifiers."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class SecurityError(Exception):
    """Raised when a validated value is unwrapped from a failed outcome."""


@dataclass(frozen=True)
class ValidationOutcome(Generic[T]):
    """
    Outcome of a security check: either a validated value or a reason.

    Outcomes are plain values; a classifier never raises to signal rejection.
    """
    value: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "ValidationOutcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: str) -> "ValidationOutcome[T]":
        return cls(reason=reason)

    @property
    def ok(self) -> bool:
        return self.reason is None

    def unwrap(self) -> T:
        """Return the validated value or raise ``SecurityError``."""
        if self.reason is not None:
            raise SecurityError(self.reason)
        return self.value  # type: ignore[return-value]
