import json
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
import respx
from httpx import Response

from paychannel.core.chains import CHAINS, ChainType, priced_chains
from paychannel.core.errors import ExternalServiceError
from paychannel.pricing.feeds import PriceFeedClient

pytestmark = pytest.mark.asyncio

COINGECKO = "https://gecko.test/api/v3"
HIVE_NODE = "https://hive.test"
BLOCKSTREAM = "https://blockstream.test/api"


@pytest_asyncio.fixture
async def feeds():
    async with httpx.AsyncClient() as http:
        yield PriceFeedClient(http, coingecko_base=COINGECKO, hive_api=HIVE_NODE, blockstream_api=BLOCKSTREAM)


def gas_price(gwei):
    return Response(200, json={"jsonrpc": "2.0", "id": 1, "result": hex(gwei * 10 ** 9)})


@respx.mock
async def test_hive_price_from_coingecko(feeds):
    respx.get(f"{COINGECKO}/simple/price").mock(return_value=Response(200, json={"hive": {"usd": 0.31}}))
    assert await feeds.fetch_hive_price() == Decimal("0.31")


@respx.mock
async def test_hive_price_falls_back_to_median_history(feeds):
    respx.get(f"{COINGECKO}/simple/price").mock(return_value=Response(429))
    node = respx.post(HIVE_NODE).mock(return_value=Response(200, json={
        "jsonrpc": "2.0", "id": 1, "result": {"base": "0.300 HBD", "quote": "1.000 HIVE"},
    }))
    assert await feeds.fetch_hive_price() == Decimal("0.3")
    assert json.loads(node.calls.last.request.content)["method"] == "condenser_api.get_current_median_history_price"


@respx.mock
async def test_hive_price_unavailable(feeds):
    respx.get(f"{COINGECKO}/simple/price").mock(side_effect=httpx.ConnectError("down"))
    respx.post(HIVE_NODE).mock(return_value=Response(502))
    with pytest.raises(ExternalServiceError):
        await feeds.fetch_hive_price()


@respx.mock
async def test_chain_prices_batched_with_per_symbol_fallback(feeds):
    route = respx.get(f"{COINGECKO}/simple/price").mock(return_value=Response(200, json={
        "bitcoin": {"usd": 65000},
        "ethereum": {"usd": 3000.5},
        "solana": {"usd": 0},
    }))
    prices = await feeds.fetch_crypto_prices(priced_chains())
    assert route.call_count == 1
    ids = route.calls.last.request.url.params["ids"].split(",")
    assert "bitcoin" in ids and "binancecoin" in ids and "monero" not in ids
    assert prices[ChainType.BTC] == Decimal("65000")
    assert prices[ChainType.ETH] == Decimal("3000.5")
    assert prices[ChainType.SOL] == CHAINS[ChainType.SOL].fallback_price_usd
    assert prices[ChainType.BNB] == CHAINS[ChainType.BNB].fallback_price_usd


@respx.mock
async def test_chain_prices_static_when_coingecko_down(feeds):
    respx.get(f"{COINGECKO}/simple/price").mock(return_value=Response(500))
    prices = await feeds.fetch_crypto_prices(priced_chains())
    assert prices == {spec.chain_type: spec.fallback_price_usd for spec in priced_chains()}


@respx.mock
async def test_btc_fee_from_blockstream(feeds):
    respx.get(f"{BLOCKSTREAM}/fee-estimates").mock(return_value=Response(200, json={"1": 30, "6": 10, "144": 1}))
    costs = await feeds.estimate_transfer_costs([CHAINS[ChainType.BTC]], {ChainType.BTC: Decimal("60000")})
    cost = costs[ChainType.BTC]
    assert cost.avg_fee_crypto == Decimal("0.0000141")
    assert cost.avg_fee_usd == Decimal("0.846")
    assert cost.network_congestion == "normal"


@respx.mock
async def test_eth_gas_price_second_endpoint(feeds):
    eth = CHAINS[ChainType.ETH]
    respx.post(eth.endpoints[0]).mock(return_value=Response(503))
    respx.post(eth.endpoints[1]).mock(return_value=gas_price(30))
    costs = await feeds.estimate_transfer_costs([eth], {ChainType.ETH: Decimal("2000")})
    cost = costs[ChainType.ETH]
    assert cost.avg_fee_crypto == Decimal("0.00063")
    assert cost.avg_fee_usd == Decimal("1.26")
    assert cost.network_congestion == "low"


@respx.mock
async def test_congestion_uses_chain_thresholds(feeds):
    eth, bnb = CHAINS[ChainType.ETH], CHAINS[ChainType.BNB]
    respx.post(eth.endpoints[0]).mock(return_value=gas_price(150))
    respx.post(bnb.endpoints[0]).mock(return_value=gas_price(7))
    costs = await feeds.estimate_transfer_costs([eth, bnb], {})
    assert costs[ChainType.ETH].network_congestion == "high"
    assert costs[ChainType.BNB].network_congestion == "medium"
    # no price known -> fee in USD is zero rather than an error
    assert costs[ChainType.ETH].avg_fee_usd == 0


@respx.mock
async def test_gas_price_static_when_all_endpoints_fail(feeds):
    matic = CHAINS[ChainType.MATIC]
    for url in matic.endpoints:
        respx.post(url).mock(side_effect=httpx.ReadTimeout("slow"))
    costs = await feeds.estimate_transfer_costs([matic], {ChainType.MATIC: Decimal("1")})
    assert costs[ChainType.MATIC].avg_fee_crypto == matic.avg_transfer_fee
    assert costs[ChainType.MATIC].network_congestion == "unknown"


async def test_static_fee_chains_make_no_calls(feeds):
    with respx.mock(assert_all_called=False) as mock:
        costs = await feeds.estimate_transfer_costs(
            [CHAINS[ChainType.SOL], CHAINS[ChainType.DASH]],
            {ChainType.SOL: Decimal("100"), ChainType.DASH: Decimal("30")},
        )
        assert not mock.calls
    assert costs[ChainType.SOL].avg_fee_usd == Decimal("0.0005")
    assert costs[ChainType.DASH].network_congestion == "normal"
