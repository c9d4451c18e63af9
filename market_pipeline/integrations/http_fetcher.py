from __future__ import annotations

import random
import threading
import time
from typing import Any, Callable, Optional

import requests
from pydantic import BaseModel, ConfigDict

from market_pipeline.errors import FetchError


class RetryPolicy(BaseModel):
    """Backoff schedule shared by every provider call site."""

    model_config = ConfigDict(frozen=True)

    name: str
    max_retries: int = 3
    base_delay_sec: float = 1.0
    max_delay_sec: float = 30.0
    jitter_sec: float = 0.0

    def delay(self, attempt: int, jitter_fn: Callable[[float, float], float] = random.uniform) -> float:
        backoff = min(self.base_delay_sec * (2**attempt), self.max_delay_sec)
        if self.jitter_sec > 0:
            backoff += jitter_fn(0.0, self.jitter_sec)
        return backoff


ON_DEMAND_POLICY = RetryPolicy(name="on-demand", max_retries=3, base_delay_sec=1.0, max_delay_sec=30.0)
NIGHTLY_POLICY = RetryPolicy(name="nightly", max_retries=2, base_delay_sec=15.0, max_delay_sec=60.0)


class RateLimiter:
    """Fixed minimum spacing between provider calls. Idle time is not banked."""

    def __init__(
        self,
        min_interval_sec: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.min_interval_sec = max(float(min_interval_sec), 0.0)
        self.clock = clock
        self.sleep_fn = sleep_fn
        self.calls = 0
        self._last_call_at: float | None = None
        self._lock = threading.Lock()

    def remaining(self, now: float | None = None) -> float:
        if self._last_call_at is None:
            return 0.0
        ref = self.clock() if now is None else now
        return max(self.min_interval_sec - (ref - self._last_call_at), 0.0)

    def mark(self) -> None:
        self._last_call_at = self.clock()
        self.calls += 1

    def wait(self) -> float:
        with self._lock:
            pause = self.remaining()
            if pause > 0:
                self.sleep_fn(pause)
            self.mark()
            return pause


class RateLimitedFetcher:
    """GET + JSON decode with retry on 429/5xx/transport errors."""

    def __init__(
        self,
        *,
        policy: RetryPolicy = ON_DEMAND_POLICY,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[Any] = None,
        headers: Optional[dict[str, str]] = None,
        timeout_sec: float = 15.0,
        sleep_fn: Callable[[float], Any] = time.sleep,
        jitter_fn: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.policy = policy
        self.rate_limiter = rate_limiter
        self.session = session or requests
        self.headers = {"Accept": "application/json", **(headers or {})}
        self.timeout_sec = timeout_sec
        self.sleep_fn = sleep_fn
        self.jitter_fn = jitter_fn
        self.attempts = 0
        self.retries = 0
        self.failures = 0

    @staticmethod
    def _is_transient(status_code: int) -> bool:
        return status_code == 429 or status_code >= 500

    @staticmethod
    def _retry_after_sec(response: Any) -> float | None:
        headers = getattr(response, "headers", None) or {}
        try:
            raw = headers.get("Retry-After")
        except AttributeError:
            return None
        if raw is None:
            return None
        try:
            return max(float(raw), 0.0)
        except (TypeError, ValueError):
            return None

    def _backoff(self, attempt: int, response: Any = None) -> float:
        delay = self.policy.delay(attempt, self.jitter_fn)
        if response is not None and getattr(response, "status_code", None) == 429:
            retry_after = self._retry_after_sec(response)
            if retry_after is not None:
                delay = max(delay, retry_after)
        return delay

    def fetch(self, url: str, params: Optional[dict[str, Any]] = None, *, label: str = "fetch") -> Any:
        max_attempts = self.policy.max_retries + 1
        last_status: int | None = None
        last_error = ""

        for attempt in range(max_attempts):
            if self.rate_limiter is not None:
                self.rate_limiter.wait()
            self.attempts += 1
            response = None
            try:
                response = self.session.get(url, params=params, headers=self.headers, timeout=self.timeout_sec)
            except requests.RequestException as exc:
                last_status = None
                last_error = f"{type(exc).__name__}: {exc}"
                print(f"[FETCH][transport_error] label={label} attempt={attempt + 1} error={last_error}", flush=True)
            else:
                status = int(response.status_code)
                if 200 <= status < 300:
                    try:
                        return response.json()
                    except ValueError as exc:
                        self.failures += 1
                        raise FetchError(
                            f"{label}: invalid JSON body",
                            url=url,
                            status_code=status,
                            attempts=attempt + 1,
                        ) from exc

                last_status = status
                last_error = f"HTTP {status}"
                if not self._is_transient(status):
                    self.failures += 1
                    print(f"[FETCH][fatal_status] label={label} status={status}", flush=True)
                    raise FetchError(
                        f"{label}: HTTP {status}",
                        url=url,
                        status_code=status,
                        attempts=attempt + 1,
                    )
                print(f"[FETCH][transient_status] label={label} attempt={attempt + 1} status={status}", flush=True)

            if attempt == max_attempts - 1:
                break

            delay = self._backoff(attempt, response)
            self.retries += 1
            print(f"[FETCH][retry_wait] label={label} policy={self.policy.name} delay_sec={delay:.1f}", flush=True)
            self.sleep_fn(delay)

        self.failures += 1
        raise FetchError(
            f"{label}: failed after {max_attempts} attempts ({last_error})",
            url=url,
            status_code=last_status,
            attempts=max_attempts,
            retryable=True,
        )

    def metrics(self) -> dict[str, int | str]:
        return {
            "policy": self.policy.name,
            "attempts": self.attempts,
            "retries": self.retries,
            "failures": self.failures,
        }
