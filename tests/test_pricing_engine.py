import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from paychannel.core.errors import DataUnavailable
from paychannel.db.models import PricingSnapshot
from paychannel.pricing.engine import PricingEngine

from conftest import StubFeeds

pytestmark = pytest.mark.asyncio


@pytest.fixture
def feeds():
    return StubFeeds()


@pytest.fixture
def engine(feeds, session_factory, clock):
    return PricingEngine(feeds, session_factory, clock=clock)


async def snapshot_count(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(PricingSnapshot))).scalar_one()


async def test_refresh_stores_snapshot(engine, session_factory):
    view = await engine.refresh_pricing()
    assert view.base_cost_usd == Decimal("0.90")
    assert view.account_creation_cost_usd == Decimal("1.35")
    assert set(view.crypto_rates) == {"BTC", "DASH", "ETH", "MATIC", "BNB", "SOL"}
    assert await snapshot_count(session_factory) == 1

    latest = await engine.get_latest_pricing()
    assert latest.id == view.id
    assert not latest.stale
    # ETH: 1.35 + 20% of (0.002 * 2500) = 2.35
    assert latest.rate_for("eth").final_cost_usd == Decimal("2.35")
    assert latest.transfer_costs["ETH"].network_congestion == "normal"


async def test_first_read_refreshes_synchronously(engine, feeds):
    view = await engine.get_latest_pricing()
    assert feeds.calls == 1
    assert view.rate_for("SOL").price_usd == Decimal("100")


async def test_first_read_without_data_is_unavailable(engine, feeds):
    feeds.fail = True
    with pytest.raises(DataUnavailable) as exc_info:
        await engine.get_latest_pricing()
    assert exc_info.value.retryable


async def test_concurrent_refresh_is_single_flight(engine, feeds, session_factory):
    feeds.delay = 0.2
    results = await asyncio.gather(engine.refresh_pricing(), engine.refresh_pricing())
    assert feeds.calls == 1
    assert sum(r is not None for r in results) == 1
    assert await snapshot_count(session_factory) == 1


async def test_concurrent_first_reads_join_one_refresh(engine, feeds, session_factory):
    feeds.delay = 0.2
    views = await asyncio.gather(*(engine.get_latest_pricing() for _ in range(3)))
    assert feeds.calls == 1
    assert len({v.id for v in views}) == 1
    assert await snapshot_count(session_factory) == 1


async def test_failed_refresh_keeps_previous_snapshot(engine, feeds):
    first = await engine.refresh_pricing()
    feeds.fail = True
    assert await engine.refresh_pricing() is None
    assert (await engine.get_latest_pricing()).id == first.id


async def test_stale_snapshot_served_while_refreshing(engine, feeds, clock):
    first = await engine.refresh_pricing()
    clock.advance(hours=3)
    feeds.hive = Decimal("0.40")

    view = await engine.get_latest_pricing()
    assert view.id == first.id
    assert view.stale
    assert engine.refreshing

    await engine._refresh_task
    fresh = await engine.get_latest_pricing()
    assert fresh.id != first.id
    assert not fresh.stale
    assert fresh.hive_price_usd == Decimal("0.40")


async def test_old_snapshots_pruned(engine, clock, session_factory):
    await engine.refresh_pricing()
    clock.advance(days=3)
    await engine.refresh_pricing()
    assert await snapshot_count(session_factory) == 2
    clock.advance(days=5)
    await engine.refresh_pricing()
    # the first snapshot is now 8 days old
    assert await snapshot_count(session_factory) == 2


async def test_unpriced_chain_has_no_rate(engine):
    view = await engine.get_latest_pricing()
    with pytest.raises(DataUnavailable):
        view.rate_for("XMR")


async def test_run_scheduled_stops(engine, feeds):
    stop = asyncio.Event()
    engine.refresh_interval = 0.01
    task = asyncio.create_task(engine.run_scheduled(stop))
    while feeds.calls < 2:
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=1)
