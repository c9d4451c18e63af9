from __future__ import annotations

import threading
import time
from typing import Callable

from market_pipeline.schemas.run import LeaseState


class RunLease:
    """Process-wide lease guarding collection cycles against overlap."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._lock = threading.Lock()
        self._state = LeaseState()
        self.clock = clock

    def _expired(self, now: int) -> bool:
        return self._state.lease_expires_at is not None and now >= self._state.lease_expires_at

    def acquire(self, owner: str, ttl_sec: float = 60, source: str = "api") -> bool:
        now = int(self.clock())
        with self._lock:
            if self._state.owner and not self._expired(now):
                return False
            self._state.owner = owner
            self._state.state = "RUNNING"
            self._state.source = source
            self._state.lease_expires_at = now + int(ttl_sec)
            return True

    def renew(self, owner: str, ttl_sec: float) -> bool:
        """Push the expiry of a held lease forward; fails if ``owner`` no longer holds it."""
        now = int(self.clock())
        with self._lock:
            if self._state.owner != owner:
                return False
            self._state.lease_expires_at = now + int(ttl_sec)
            return True

    def release(self, owner: str, source: str = "api") -> bool:
        with self._lock:
            if self._state.owner != owner:
                return False
            self._state.owner = None
            self._state.state = "IDLE"
            self._state.source = source
            self._state.lease_expires_at = None
            return True

    def status(self) -> LeaseState:
        now = int(self.clock())
        with self._lock:
            if self._state.owner and self._expired(now):
                self._state.owner = None
                self._state.state = "IDLE"
                self._state.source = "lease-expired"
                self._state.lease_expires_at = None
            return self._state.model_copy(deep=True)
