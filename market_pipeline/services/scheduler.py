from __future__ import annotations

import threading

from market_pipeline.errors import PipelineError, RunInProgressError
from market_pipeline.services.collection import CollectionLoop


class NightlyScheduler:
    """Background thread triggering the nightly duty cycle every ``interval_sec``."""

    def __init__(self, *, collection_loop: CollectionLoop, interval_sec: float = 24 * 3600) -> None:
        self.collection_loop = collection_loop
        self.interval_sec = interval_sec
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._metrics = {
            "triggers": 0,
            "succeeded": 0,
            "failed": 0,
            "skipped": 0,
        }
        self.last_error: str | None = None

    def trigger(self) -> None:
        self._metrics["triggers"] += 1
        try:
            report = self.collection_loop.run_nightly()
        except PipelineError as exc:
            self.last_error = str(exc)
            key = "skipped" if isinstance(exc, RunInProgressError) else "failed"
            self._metrics[key] += 1
            print(f"[SCHED][nightly_{key}] error={exc}", flush=True)
            return
        except Exception as exc:
            # keep the schedule alive; the run already recorded itself as failed
            self.last_error = f"{type(exc).__name__}: {exc}"
            self._metrics["failed"] += 1
            print(f"[SCHED][nightly_error] error={self.last_error}", flush=True)
            return
        if report.status == "ok":
            self._metrics["succeeded"] += 1

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_sec):
            self.trigger()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="nightly-scheduler")
        print(f"[SCHED][start] interval_sec={self.interval_sec}", flush=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self.collection_loop.stop()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        print("[SCHED][stop]", flush=True)

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def metrics(self) -> dict:
        return {
            **self._metrics,
            "running": self.running,
            "interval_sec": self.interval_sec,
            "last_error": self.last_error,
        }
