"""Tagged outcomes returned by calls to the generative API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Literal, TypeVar

T = TypeVar("T")
U = TypeVar("U")

OutcomeState = Literal["ok", "empty", "failed"]


@dataclass(slots=True, frozen=True)
class Outcome(Generic[T]):
    """Result of a remote call that distinguishes "no data" from "error".

    ``ok`` carries a value, ``empty`` means the call worked (or was skipped
    on purpose) but produced nothing usable, ``failed`` carries a short
    machine-readable reason such as ``rate-limited`` or ``invalid-json``.
    """

    state: OutcomeState
    value: T | None = None
    reason: str | None = None

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        return cls(state="ok", value=value)

    @classmethod
    def empty(cls, reason: str | None = None) -> "Outcome[T]":
        return cls(state="empty", reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "Outcome[T]":
        return cls(state="failed", reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.state == "ok"

    @property
    def is_empty(self) -> bool:
        return self.state == "empty"

    @property
    def is_failed(self) -> bool:
        return self.state == "failed"

    def value_or(self, default: U) -> T | U:
        if self.state == "ok":
            return self.value  # type: ignore[return-value]
        return default

    def map(self, func: Callable[[T], U]) -> "Outcome[U]":
        """Transform the carried value, leaving empty/failed outcomes untouched."""

        if self.state != "ok":
            return Outcome(state=self.state, reason=self.reason)
        return Outcome.ok(func(self.value))  # type: ignore[arg-type]

    def to_payload(self, serialise: Callable[[T], Any] | None = None) -> dict[str, Any]:
        """Return the JSON envelope used by the HTTP layer."""

        data: Any = None
        if self.state == "ok":
            data = serialise(self.value) if serialise else self.value  # type: ignore[arg-type]
        return {"status": self.state, "data": data, "reason": self.reason}
