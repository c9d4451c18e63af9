from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime
from typing import Callable

from market_pipeline.config.settings import Settings
from market_pipeline.errors import FetchError, RunInProgressError, StorageError
from market_pipeline.integrations.coingecko_rest import CoinGeckoRestClient
from market_pipeline.integrations.http_fetcher import (
    NIGHTLY_POLICY,
    ON_DEMAND_POLICY,
    RateLimitedFetcher,
    RateLimiter,
    RetryPolicy,
)
from market_pipeline.schemas.cache import EnrichedRecord, IndicatorMode
from market_pipeline.schemas.listing import RawListingRecord
from market_pipeline.schemas.run import ItemFailure, RunReport
from market_pipeline.schemas.snapshot import SnapshotRow
from market_pipeline.services.cache_writer import CacheWriter, LocalObjectStore, format_timestamp, utc_now
from market_pipeline.services.coin_filter import select_eligible
from market_pipeline.services.enricher import enrich
from market_pipeline.services.indicators import IndicatorEngine
from market_pipeline.services.run_lease import RunLease
from market_pipeline.services.snapshot_store import SnapshotTable

ClientFactory = Callable[[RetryPolicy, RateLimiter], CoinGeckoRestClient]

ON_DEMAND_SOURCE = "coingecko-markets"
NIGHTLY_SOURCE = "nightly-collector"


class CollectionLoop:
    """Runs enrichment cycles: a single on-demand pass or a time-boxed nightly duty cycle.

    Both variants share one rate limiter per run, one lease and the same
    per-item failure policy: a coin whose chart cannot be fetched is reported
    and left out of the payload, while a failed listing or storage write aborts
    the run without publishing.
    """

    def __init__(
        self,
        *,
        client_factory: ClientFactory,
        cache_writer: CacheWriter,
        snapshot_table: SnapshotTable,
        lease: RunLease | None = None,
        page_size: int = 50,
        chart_days: int = 7,
        on_demand_max_coins: int = 10,
        on_demand_call_interval_sec: float = 4.0,
        nightly_duration_sec: float = 25 * 60,
        nightly_call_interval_sec: float = 15.0,
        nightly_top_n: int = 10,
        nightly_indicator_mode: IndicatorMode = "proxy",
        lease_margin_sec: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
        now_fn: Callable[[], datetime] = utc_now,
        sleep_fn: Callable[[float], object] | None = None,
    ) -> None:
        self.client_factory = client_factory
        self.cache_writer = cache_writer
        self.snapshot_table = snapshot_table
        self.lease = lease or RunLease()
        self.page_size = page_size
        self.chart_days = chart_days
        self.on_demand_max_coins = on_demand_max_coins
        self.on_demand_call_interval_sec = on_demand_call_interval_sec
        self.nightly_duration_sec = nightly_duration_sec
        self.nightly_call_interval_sec = nightly_call_interval_sec
        self.nightly_top_n = nightly_top_n
        self.nightly_indicator_mode = nightly_indicator_mode
        self.lease_margin_sec = lease_margin_sec
        self.clock = clock
        self.now_fn = now_fn
        self._sleep_fn = sleep_fn
        self._stop_event = threading.Event()

        self.state = "IDLE"
        self.last_report: RunReport | None = None
        self._metrics = {
            "runs": 0,
            "failed_runs": 0,
            "cancelled_runs": 0,
            "api_calls": 0,
            "failed_items": 0,
            "snapshot_rows": 0,
        }

    # ------------------------------------------------------------------
    # control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _sleep(self, seconds: float) -> None:
        if seconds <= 0:
            return
        previous = self.state
        self.state = "SLEEPING"
        try:
            if self._sleep_fn is not None:
                self._sleep_fn(seconds)
            else:
                self._stop_event.wait(seconds)
        finally:
            self.state = previous

    def _begin(self, mode: str, ttl_sec: float) -> str:
        owner = f"{mode}-{uuid.uuid4().hex[:8]}"
        if not self.lease.acquire(owner, ttl_sec=ttl_sec, source=mode):
            holder = self.lease.status().owner
            print(f"[COLLECT][run_rejected] mode={mode} holder={holder}", flush=True)
            raise RunInProgressError(holder)
        self._stop_event.clear()
        self.state = "PAGINATING"
        print(f"[COLLECT][run_start] mode={mode} owner={owner}", flush=True)
        return owner

    def _finish(self, owner: str, report: RunReport, limiter: RateLimiter, started: float) -> None:
        report.api_calls = limiter.calls
        report.duration_sec = round(self.clock() - started, 3)
        self.lease.release(owner, source=report.mode)
        self.state = "DONE"

        self._metrics["runs"] += 1
        self._metrics["api_calls"] += report.api_calls
        self._metrics["failed_items"] += len(report.failed_items)
        if report.status == "failed":
            self._metrics["failed_runs"] += 1
        elif report.status == "cancelled":
            self._metrics["cancelled_runs"] += 1
        self.last_report = report

        print(
            f"[COLLECT][run_end] mode={report.mode} status={report.status} "
            f"collected={report.coins_collected} enriched={report.coins_enriched} "
            f"failed_items={len(report.failed_items)} api_calls={report.api_calls} "
            f"duration_sec={report.duration_sec}",
            flush=True,
        )

    def _fail_unexpected(self, report: RunReport, exc: Exception) -> None:
        report.status = "failed"
        report.error = f"{type(exc).__name__}: {exc}"
        print(f"[COLLECT][unexpected_error] mode={report.mode} error={report.error}", flush=True)

    def _keep_alive(self, owner: str, until: float | None = None) -> None:
        """Extend the lease to ``until`` (clock units) plus the margin."""
        remaining = 0.0 if until is None else max(until - self.clock(), 0.0)
        if not self.lease.renew(owner, ttl_sec=remaining + self.lease_margin_sec):
            print(f"[COLLECT][lease_lost] owner={owner} holder={self.lease.status().owner}", flush=True)

    # ------------------------------------------------------------------
    # shared steps
    # ------------------------------------------------------------------

    def _enrich_batch(
        self,
        client: CoinGeckoRestClient,
        engine: IndicatorEngine,
        records: list[RawListingRecord],
        report: RunReport,
        owner: str,
    ) -> list[EnrichedRecord]:
        out: list[EnrichedRecord] = []
        for i, record in enumerate(records, start=1):
            if self.stopped:
                break
            series = None
            if engine.needs_series:
                print(f"[COLLECT][chart] coin={record.id} index={i}/{len(records)}", flush=True)
                self._keep_alive(owner)
                try:
                    series = client.get_market_chart(record.id, days=self.chart_days)
                except FetchError as exc:
                    report.failed_items.append(ItemFailure(coin_id=record.id, stage="chart", error=str(exc)))
                    print(f"[COLLECT][item_skip] coin={record.id} error={exc}", flush=True)
                    continue
            out.append(enrich(record, engine.compute(record, series)))
        report.coins_enriched = len(out)
        return out

    def _publish(self, coins: list[EnrichedRecord], *, source: str, mode: IndicatorMode, report: RunReport) -> None:
        payload = self.cache_writer.build_payload(coins, source=source, indicators=mode)
        report.path = self.cache_writer.publish(payload)
        report.updated_at = payload.updated_at

    # ------------------------------------------------------------------
    # on-demand variant
    # ------------------------------------------------------------------

    def run_on_demand(self) -> RunReport:
        started = self.clock()
        ttl = self.on_demand_call_interval_sec * (self.on_demand_max_coins + 1) + self.lease_margin_sec
        owner = self._begin("on-demand", ttl)
        report = RunReport(mode="on-demand")
        limiter = RateLimiter(self.on_demand_call_interval_sec, clock=self.clock, sleep_fn=self._sleep)

        try:
            client = self.client_factory(ON_DEMAND_POLICY, limiter)
            listing = client.get_markets(page=1, per_page=self.page_size)
            report.pages_fetched = 1
            report.coins_collected = len(listing)

            selected = select_eligible(listing, limit=self.on_demand_max_coins)
            print(
                f"[COLLECT][listing] fetched={len(listing)} eligible_selected={len(selected)}",
                flush=True,
            )
            coins = self._enrich_batch(client, IndicatorEngine("exact"), selected, report, owner)

            if self.stopped:
                report.status = "cancelled"
            else:
                self._publish(coins, source=ON_DEMAND_SOURCE, mode="exact", report=report)
        except (FetchError, StorageError) as exc:
            report.status = "failed"
            report.error = str(exc)
            raise
        except Exception as exc:
            self._fail_unexpected(report, exc)
            raise
        finally:
            self._finish(owner, report, limiter, started)
        return report

    # ------------------------------------------------------------------
    # nightly duty cycle
    # ------------------------------------------------------------------

    def _collect_page(self, client: CoinGeckoRestClient, page: int, report: RunReport) -> int:
        try:
            listing = client.get_markets(page=page, per_page=self.page_size)
        except FetchError as exc:
            report.round_errors += 1
            print(f"[COLLECT][page_error] page={page} error={exc}", flush=True)
            return 0

        report.pages_fetched += 1
        if not listing:
            return 0

        collected_at = format_timestamp(self.now_fn())
        rows = [SnapshotRow.from_listing(record, collected_at) for record in listing]
        try:
            stored = self.snapshot_table.insert_many(rows)
        except StorageError as exc:
            report.round_errors += 1
            print(f"[SNAPSHOT][insert_error] page={page} error={exc}", flush=True)
        else:
            report.coins_collected += stored
            self._metrics["snapshot_rows"] += stored
            print(f"[SNAPSHOT][insert] page={page} rows={stored} total={report.coins_collected}", flush=True)
        return len(listing)

    def run_nightly(self, duration_sec: float | None = None, deadline: float | None = None) -> RunReport:
        """Collect listing pages until ``deadline`` (clock units) then publish the tail batch.

        ``duration_sec`` defaults to the configured duty cycle; an explicit
        ``deadline`` wins over it. ``stop()`` ends the cycle early and skips
        the publish.
        """
        started = self.clock()
        duration = self.nightly_duration_sec if duration_sec is None else float(duration_sec)
        end = started + duration if deadline is None else float(deadline)
        owner = self._begin("nightly", max(end - started, 0.0) + self.lease_margin_sec)
        report = RunReport(mode="nightly")
        limiter = RateLimiter(self.nightly_call_interval_sec, clock=self.clock, sleep_fn=self._sleep)

        try:
            client = self.client_factory(NIGHTLY_POLICY, limiter)
            page = 1
            while self.clock() < end and not self.stopped:
                self.state = "PAGINATING"
                self._keep_alive(owner, end)
                returned = self._collect_page(client, page, report)
                if returned == self.page_size:
                    page += 1
                else:
                    # short or empty page: end of listing, start over
                    page = 1

                wait = limiter.remaining()
                if self.clock() + wait >= end:
                    break
                self._sleep(wait)

            if self.stopped:
                report.status = "cancelled"
                return report

            self.state = "PAGINATING"
            # the tail may retry well past the deadline
            self._keep_alive(owner)
            latest = client.get_markets(page=1, per_page=self.page_size)
            selected = select_eligible(latest, limit=self.nightly_top_n)
            engine = IndicatorEngine(self.nightly_indicator_mode)
            coins = self._enrich_batch(client, engine, selected, report, owner)

            if self.stopped:
                report.status = "cancelled"
            else:
                self._publish(coins, source=NIGHTLY_SOURCE, mode=engine.mode, report=report)
        except (FetchError, StorageError) as exc:
            report.status = "failed"
            report.error = str(exc)
            raise
        except Exception as exc:
            self._fail_unexpected(report, exc)
            raise
        finally:
            self._finish(owner, report, limiter, started)
        return report

    def metrics(self) -> dict:
        return {
            "state": self.state,
            "lease": self.lease.status().model_dump(),
            "publishes": self.cache_writer.publishes,
            "last_updated_at": self.cache_writer.last_updated_at,
            **self._metrics,
            "last_report": self.last_report.model_dump() if self.last_report else None,
        }


def build_collection_loop(settings: Settings, *, lease: RunLease | None = None, session=None) -> CollectionLoop:
    def client_factory(policy: RetryPolicy, limiter: RateLimiter) -> CoinGeckoRestClient:
        fetcher = RateLimitedFetcher(
            policy=policy,
            rate_limiter=limiter,
            session=session,
            sleep_fn=limiter.sleep_fn,
        )
        return CoinGeckoRestClient(
            fetcher,
            base_url=settings.PROVIDER_BASE_URL,
            api_key=settings.PROVIDER_API_KEY,
        )

    return CollectionLoop(
        client_factory=client_factory,
        cache_writer=CacheWriter(LocalObjectStore(settings.CACHE_ROOT, settings.CACHE_BUCKET), settings.CACHE_KEY),
        snapshot_table=SnapshotTable(settings.SNAPSHOT_TABLE_PATH),
        lease=lease,
        page_size=settings.NIGHTLY_PAGE_SIZE,
        on_demand_max_coins=settings.ON_DEMAND_MAX_COINS,
        on_demand_call_interval_sec=settings.ON_DEMAND_CALL_INTERVAL_SEC,
        nightly_duration_sec=settings.NIGHTLY_DURATION_SEC,
        nightly_call_interval_sec=settings.nightly_call_interval_sec,
        nightly_top_n=settings.NIGHTLY_TOP_N,
        nightly_indicator_mode=settings.NIGHTLY_INDICATOR_MODE,
    )
