"""
PricingEngine - persisted account-creation pricing with single-flight refresh.

- refresh_pricing(): fetch feeds, compute, append one PricingSnapshot, prune old ones.
  Only one refresh runs at a time per process (concurrent calls are no-ops); on
  PostgreSQL a try-advisory-lock keeps other processes from refreshing concurrently.
  A failed refresh leaves the previous snapshot in place and returns None.
- get_latest_pricing(): newest snapshot. With none stored, waits for a refresh (or joins
  the one in flight); if there is still nothing, DataUnavailable. A snapshot older than
  PRICING_STALE_AFTER_SECONDS is returned as-is and a background refresh is started.

Metrics:
- paychannel_pricing_refresh_total{result}
- paychannel_pricing_last_success_unixtime
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from prometheus_client import Counter, Gauge
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from paychannel.core.chains import chain_spec, priced_chains
from paychannel.core.config import settings
from paychannel.core.errors import DataUnavailable, PaymentCoreError
from paychannel.db.models import PricingSnapshot
from paychannel.pricing.calculator import ChainRate, TransferCost, compute_pricing, to_decimal
from paychannel.pricing.feeds import PriceFeedClient
from paychannel.utils.timeutils import as_utc, utcnow

logger = logging.getLogger("paychannel.pricing.engine")

MET_PRICING_REFRESH = Counter("paychannel_pricing_refresh_total", "Pricing refresh attempts", ["result"])
MET_PRICING_LAST_SUCCESS = Gauge("paychannel_pricing_last_success_unixtime", "Unix time of last successful pricing refresh")

REFRESH_INTERVAL = int(getattr(settings, "PRICING_REFRESH_INTERVAL_SECONDS", 3600))
STALE_AFTER = timedelta(seconds=int(getattr(settings, "PRICING_STALE_AFTER_SECONDS", 7200)))
RETENTION = timedelta(days=int(getattr(settings, "PRICING_RETENTION_DAYS", 7)))

REFRESH_LOCK_NAME = "paychannel.pricing.refresh"


@dataclass(frozen=True)
class PricingView:
    id: int
    hive_price_usd: Decimal
    base_cost_usd: Decimal
    account_creation_cost_usd: Decimal
    crypto_rates: dict
    transfer_costs: dict
    updated_at: datetime
    stale: bool = False

    def rate_for(self, chain_type) -> ChainRate:
        symbol = chain_spec(chain_type).chain_type.value
        rate = self.crypto_rates.get(symbol)
        if rate is None:
            raise DataUnavailable(f"No pricing for {symbol}")
        return rate


class PricingEngine:
    def __init__(
        self,
        feeds: PriceFeedClient,
        session_factory,
        stale_after: timedelta = STALE_AFTER,
        retention: timedelta = RETENTION,
        refresh_interval: int = REFRESH_INTERVAL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.feeds = feeds
        self._session_factory = session_factory
        self.stale_after = stale_after
        self.retention = retention
        self.refresh_interval = refresh_interval
        self._clock = clock
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def _start_refresh(self) -> asyncio.Task:
        self._refresh_task = asyncio.create_task(self._refresh())
        return self._refresh_task

    async def refresh_pricing(self) -> Optional[PricingView]:
        if self.refreshing:
            logger.info("Pricing update already in progress, skipping")
            MET_PRICING_REFRESH.labels("skipped").inc()
            return None
        return await self._start_refresh()

    async def _refresh(self) -> Optional[PricingView]:
        started = time.monotonic()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if session.bind is not None and session.bind.dialect.name == "postgresql":
                        acquired = (await session.execute(
                            select(func.pg_try_advisory_xact_lock(func.hashtext(REFRESH_LOCK_NAME)))
                        )).scalar()
                        if not acquired:
                            logger.info("Pricing refresh running in another process, skipping")
                            MET_PRICING_REFRESH.labels("skipped").inc()
                            return None

                    chains = priced_chains()
                    hive_price = await self.feeds.fetch_hive_price()
                    prices = await self.feeds.fetch_crypto_prices(chains)
                    costs = await self.feeds.estimate_transfer_costs(chains, prices)
                    result = compute_pricing(
                        hive_price,
                        {chain.value: price for chain, price in prices.items()},
                        {chain.value: cost for chain, cost in costs.items()},
                    )

                    now = self._clock()
                    row = PricingSnapshot(
                        hive_price_usd=result.hive_price_usd,
                        base_cost_usd=result.base_cost_usd,
                        account_creation_cost_usd=result.account_creation_cost_usd,
                        crypto_rates={k: v.as_json() for k, v in result.crypto_rates.items()},
                        transfer_costs={k: v.as_json() for k, v in result.transfer_costs.items()},
                        updated_at=now,
                    )
                    session.add(row)
                    await session.flush()
                    snapshot_id = row.id
                    pruned = await session.execute(
                        delete(PricingSnapshot).where(PricingSnapshot.updated_at < now - self.retention)
                    )
        except PaymentCoreError as exc:
            MET_PRICING_REFRESH.labels("failed").inc()
            logger.error("Pricing update failed, keeping previous snapshot: %s", exc)
            return None
        except SQLAlchemyError:
            MET_PRICING_REFRESH.labels("failed").inc()
            logger.exception("Pricing snapshot could not be stored")
            return None

        MET_PRICING_REFRESH.labels("success").inc()
        MET_PRICING_LAST_SUCCESS.set(int(time.time()))
        logger.info(
            "Pricing updated: HIVE=$%s creation=$%s chains=%s pruned=%s in %.2fs",
            result.hive_price_usd, result.account_creation_cost_usd, ",".join(result.crypto_rates),
            pruned.rowcount or 0, time.monotonic() - started,
        )
        return PricingView(
            id=snapshot_id,
            hive_price_usd=result.hive_price_usd,
            base_cost_usd=result.base_cost_usd,
            account_creation_cost_usd=result.account_creation_cost_usd,
            crypto_rates=dict(result.crypto_rates),
            transfer_costs=dict(result.transfer_costs),
            updated_at=now,
        )

    async def _load_latest(self) -> Optional[PricingView]:
        async with self._session_factory() as session:
            row = (await session.execute(
                select(PricingSnapshot).order_by(PricingSnapshot.updated_at.desc(), PricingSnapshot.id.desc()).limit(1)
            )).scalar_one_or_none()
        if row is None:
            return None
        updated_at = as_utc(row.updated_at)
        return PricingView(
            id=row.id,
            hive_price_usd=to_decimal(row.hive_price_usd),
            base_cost_usd=to_decimal(row.base_cost_usd),
            account_creation_cost_usd=to_decimal(row.account_creation_cost_usd),
            crypto_rates={k: ChainRate.from_json(v) for k, v in (row.crypto_rates or {}).items()},
            transfer_costs={k: TransferCost.from_json(v) for k, v in (row.transfer_costs or {}).items()},
            updated_at=updated_at,
            stale=self._clock() - updated_at > self.stale_after,
        )

    async def get_latest_pricing(self) -> PricingView:
        view = await self._load_latest()
        if view is None:
            logger.info("No pricing snapshot stored, refreshing now")
            task = self._refresh_task if self.refreshing else self._start_refresh()
            await asyncio.shield(task)
            view = await self._load_latest()
            if view is None:
                raise DataUnavailable("Pricing data not available")
            return view
        if view.stale:
            if not self.refreshing:
                logger.info("Pricing snapshot %s is stale (updated %s), refreshing in background", view.id, view.updated_at)
                self._start_refresh()
        return view

    async def run_scheduled(self, stop: Optional[asyncio.Event] = None):
        """Refresh immediately, then every refresh_interval seconds until stop is set."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.refresh_pricing()
            except Exception:
                logger.exception("Scheduled pricing refresh crashed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.refresh_interval)
            except asyncio.TimeoutError:
                pass
