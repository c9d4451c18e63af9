from __future__ import annotations

import os
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from market_pipeline.errors import StorageError
from market_pipeline.schemas.cache import CachePayload, EnrichedRecord, IndicatorMode

FALLBACK_PAYLOAD = CachePayload(
    updated_at="1970-01-01T00:00:00.000Z",
    source="fallback",
    indicators=None,
    coins=[],
)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LocalObjectStore:
    """Bucket/key object store on the local filesystem with atomic replace."""

    def __init__(self, root: str | Path, bucket: str) -> None:
        self.root = Path(root)
        self.bucket = bucket

    def path_for(self, key: str) -> Path:
        return self.root / self.bucket / key

    def put_object(self, key: str, data: bytes) -> str:
        target = self.path_for(key)
        tmp = target.with_name(f"{target.name}.tmp-{uuid.uuid4().hex[:8]}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
        except OSError as exc:
            if tmp.exists():
                tmp.unlink()
            raise StorageError(f"put_object failed for {self.bucket}/{key}: {exc}") from exc
        return f"{self.bucket}/{key}"

    def get_object(self, key: str) -> bytes | None:
        target = self.path_for(key)
        if not target.exists():
            return None
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageError(f"get_object failed for {self.bucket}/{key}: {exc}") from exc


class CacheWriter:
    def __init__(
        self,
        store: LocalObjectStore,
        key: str = "daily/full_market.json",
        *,
        now_fn: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.key = key
        self.now_fn = now_fn
        self.publishes = 0
        self.last_updated_at: str | None = None
        self._last_ts: datetime | None = None
        self._lock = threading.Lock()

    def _next_timestamp(self) -> datetime:
        now = self.now_fn().astimezone(timezone.utc)
        now = now.replace(microsecond=(now.microsecond // 1000) * 1000)
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + timedelta(milliseconds=1)
        return now

    def build_payload(
        self,
        coins: list[EnrichedRecord],
        *,
        source: str,
        indicators: IndicatorMode | None = None,
    ) -> CachePayload:
        unique: list[EnrichedRecord] = []
        seen: set[str] = set()
        for coin in coins:
            if coin.id in seen:
                continue
            seen.add(coin.id)
            unique.append(coin)

        with self._lock:
            ts = self._next_timestamp()
            self._last_ts = ts
        return CachePayload(updated_at=format_timestamp(ts), source=source, indicators=indicators, coins=unique)

    def publish(self, payload: CachePayload) -> str:
        data = payload.to_json().encode("utf-8")
        path = self.store.put_object(self.key, data)
        self.publishes += 1
        self.last_updated_at = payload.updated_at
        print(
            f"[CACHE][publish] path={path} coins={len(payload.coins)} source={payload.source} "
            f"updated_at={payload.updated_at}",
            flush=True,
        )
        return path

    def read_latest(self) -> CachePayload:
        try:
            raw = self.store.get_object(self.key)
        except StorageError as exc:
            print(f"[CACHE][read_fallback] reason={exc}", flush=True)
            return FALLBACK_PAYLOAD.model_copy(deep=True)
        if raw is None:
            return FALLBACK_PAYLOAD.model_copy(deep=True)
        try:
            return CachePayload.from_json(raw)
        except ValidationError as exc:
            print(f"[CACHE][read_fallback] reason=invalid_payload error_count={exc.error_count()}", flush=True)
            return FALLBACK_PAYLOAD.model_copy(deep=True)
