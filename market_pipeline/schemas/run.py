from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ItemFailure(BaseModel):
    coin_id: str
    stage: str
    error: str


class RunReport(BaseModel):
    mode: Literal["on-demand", "nightly"]
    status: Literal["ok", "failed", "cancelled"] = "ok"
    coins_collected: int = 0
    coins_enriched: int = 0
    api_calls: int = 0
    pages_fetched: int = 0
    round_errors: int = 0
    failed_items: list[ItemFailure] = Field(default_factory=list)
    duration_sec: float = 0.0
    path: str | None = None
    updated_at: str | None = None
    error: str | None = None


class LeaseState(BaseModel):
    owner: str | None = None
    state: str = "IDLE"
    source: str = "bootstrap"
    lease_expires_at: int | None = None
