"""
Store for pending authorization flows (state -> code_verifier, nonce, return_url).
Used between /login and /callback. Entries are single-use and reaped after a TTL.
"""
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from access_portal.config import STATE_TTL_SECONDS


@dataclass(frozen=True)
class PendingAuthorization:
    state: str
    code_verifier: str
    nonce: str
    return_url: str | None
    created_at: float

    def expired(self, now: float, ttl_seconds: int = STATE_TTL_SECONDS) -> bool:
        return (now - self.created_at) > ttl_seconds


class StateStore(ABC):
    """Pending logins keyed by state. Implementations must make take_and_validate atomic."""

    @abstractmethod
    def put(self, pending: PendingAuthorization) -> None:
        """Store a new pending login under its state; purges expired entries first."""

    @abstractmethod
    def take_and_validate(self, state: str) -> PendingAuthorization | None:
        """Remove and return the live entry for state, or None (unknown, consumed or expired)."""

    @abstractmethod
    def purge(self) -> int:
        """Drop expired entries; returns how many were removed."""


class InMemoryStateStore(StateStore):
    """
    Process-local store. One lock guards the dict; nothing under the lock does I/O.
    Does not survive restarts or span instances; use SqlStateStore for that.
    """

    def __init__(self, ttl_seconds: int = STATE_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self._ttl = ttl_seconds
        self._clock = clock
        self._pending: dict[str, PendingAuthorization] = {}
        self._lock = threading.Lock()

    def put(self, pending: PendingAuthorization) -> None:
        with self._lock:
            self._purge_locked(self._clock())
            if pending.state in self._pending:
                raise ValueError("state already pending")
            self._pending[pending.state] = pending

    def take_and_validate(self, state: str) -> PendingAuthorization | None:
        with self._lock:
            pending = self._pending.pop(state, None)
        if pending is None or pending.expired(self._clock(), self._ttl):
            return None
        return pending

    def purge(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: float) -> int:
        expired = [s for s, p in self._pending.items() if p.expired(now, self._ttl)]
        for s in expired:
            del self._pending[s]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
