from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a collaborator call: a value, or a human-readable error."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "Result[T]":
        if not error:
            raise ValueError("Failure result must have an error message")
        return cls(error=error)


@dataclass(frozen=True)
class Decision:
    """Tagged authorization outcome: Allowed, or Denied with a reason."""

    allowed: bool
    reason: Optional[str] = None

    @property
    def denied(self) -> bool:
        return not self.allowed


ALLOWED = Decision(allowed=True)


def denied(reason: str) -> Decision:
    return Decision(allowed=False, reason=reason)
