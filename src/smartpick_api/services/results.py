"""Typed outcomes for engine operations.

Business-rule violations come back as ``Err`` values instead of exceptions; only
infrastructure failures propagate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ALREADY_CLAIMED = "already_claimed"
    ALREADY_LIFTED = "already_lifted"
    RACE_LOST = "race_lost"
    SUSPENDED = "suspended"
    IN_COOLDOWN = "in_cooldown"
    LIMIT_REACHED = "limit_reached"
    VALIDATION = "validation"


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    kind: ErrorKind
    key: str
    params: dict[str, Any] = field(default_factory=dict)
    # Set when the operation wrote state that must be committed despite the error.
    persist: bool = False

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        from smartpick_api.services.messages import render_message

        return render_message(self.key, **self.params)


Result = Union[Ok[T], Err]


def err(kind: ErrorKind, key: str, **params: Any) -> Err:
    return Err(kind=kind, key=key, params=params)


def persisted_err(kind: ErrorKind, key: str, **params: Any) -> Err:
    return Err(kind=kind, key=key, params=params, persist=True)


__all__ = ["Err", "ErrorKind", "Ok", "Result", "err", "persisted_err"]
