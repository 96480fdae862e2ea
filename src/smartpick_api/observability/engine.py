from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class EngineSnapshot:
    ledger: Dict[str, int]
    transitions: Dict[str, int]
    idempotent_outcomes: Dict[str, int]
    races_lost: Dict[str, int]
    rejections: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "ledger": dict(self.ledger),
            "transitions": dict(self.transitions),
            "idempotent_outcomes": dict(self.idempotent_outcomes),
            "races_lost": dict(self.races_lost),
            "rejections": dict(self.rejections),
        }


class EngineObservabilityStore:
    """Process-local counters for ledger, lifecycle and idempotency outcomes."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._ledger: Dict[str, int] = defaultdict(int)
        self._transitions: Dict[str, int] = defaultdict(int)
        self._idempotent: Dict[str, int] = defaultdict(int)
        self._races: Dict[str, int] = defaultdict(int)
        self._rejections: Dict[str, int] = defaultdict(int)

    def record_ledger_transaction(self, reason: str, delta: int) -> None:
        with self._lock:
            self._ledger[f"count:{reason}"] += 1
            self._ledger[f"points:{reason}"] += delta

    def record_transition(self, status: str) -> None:
        with self._lock:
            self._transitions[status] += 1

    def record_idempotent_outcome(self, outcome: str) -> None:
        with self._lock:
            self._idempotent[outcome] += 1

    def record_race_lost(self, component: str) -> None:
        with self._lock:
            self._races[component] += 1

    def record_rejection(self, kind: str) -> None:
        with self._lock:
            self._rejections[kind] += 1

    def snapshot(self) -> EngineSnapshot:
        with self._lock:
            return EngineSnapshot(
                ledger=dict(self._ledger),
                transitions=dict(self._transitions),
                idempotent_outcomes=dict(self._idempotent),
                races_lost=dict(self._races),
                rejections=dict(self._rejections),
            )

    def reset(self) -> None:
        with self._lock:
            self._ledger.clear()
            self._transitions.clear()
            self._idempotent.clear()
            self._races.clear()
            self._rejections.clear()


_STORE = EngineObservabilityStore()


def get_engine_store() -> EngineObservabilityStore:
    return _STORE


__all__ = ["EngineObservabilityStore", "EngineSnapshot", "get_engine_store"]
