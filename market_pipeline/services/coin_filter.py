from __future__ import annotations

from typing import Any

from market_pipeline.schemas.listing import RawListingRecord

STABLECOIN_SYMBOLS = frozenset({"usdt", "usdc", "busd", "dai", "tusd", "usdp", "usdd", "gusd", "lusd"})

MIN_MARKET_CAP = 200_000_000
MIN_VOLUME_24H = 5_000_000
MAX_MARKET_CAP_RANK = 500
MISSING_RANK = 9999


def is_stablecoin(symbol: str | None) -> bool:
    if not symbol:
        return False
    return str(symbol).strip().lower() in STABLECOIN_SYMBOLS


def is_eligible(record: RawListingRecord | dict[str, Any] | None) -> bool:
    if not isinstance(record, RawListingRecord):
        record = RawListingRecord.from_provider(record)

    if is_stablecoin(record.symbol):
        return False
    if record.market_cap < MIN_MARKET_CAP:
        return False
    if record.total_volume < MIN_VOLUME_24H:
        return False
    rank = record.market_cap_rank if record.market_cap_rank is not None else MISSING_RANK
    if rank > MAX_MARKET_CAP_RANK:
        return False
    return True


def select_eligible(records: list[RawListingRecord], limit: int | None = None) -> list[RawListingRecord]:
    """Eligible records in listing order, one per id."""
    out: list[RawListingRecord] = []
    seen: set[str] = set()
    for record in records:
        if record.id in seen or not is_eligible(record):
            continue
        seen.add(record.id)
        out.append(record)
        if limit is not None and len(out) >= limit:
            break
    return out
