"""
PriceFeedClient - async access to the public price and fee sources.

- HIVE price: CoinGecko simple/price, falling back to the HIVE node's
  condenser_api.get_current_median_history_price (base / quote)
- chain prices: one batched CoinGecko call; static fallbacks from the chain table
  when the call fails and for any symbol missing from the answer
- transfer costs: Blockstream fee-estimates for BTC, eth_gasPrice on each
  account chain (first endpoint, then second), static defaults otherwise

Only fetch_hive_price raises (ExternalServiceError) once both sources failed; every
other lookup degrades to the static table and logs.
"""
import logging
from decimal import Decimal
from typing import Iterable, Optional

import httpx
from prometheus_client import Counter

from paychannel.core.chains import ChainFamily, ChainSpec, ChainType
from paychannel.core.config import settings
from paychannel.core.errors import ExternalServiceError
from paychannel.pricing.calculator import TransferCost, to_decimal

logger = logging.getLogger("paychannel.pricing.feeds")

MET_FEED_FALLBACKS = Counter("paychannel_pricing_feed_fallbacks_total", "Price/fee lookups served by a fallback", ["source"])

COINGECKO_BASE = getattr(settings, "COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3")
HIVE_API = getattr(settings, "HIVE_API_URL", "https://api.hive.blog")
BLOCKSTREAM_API = getattr(settings, "BLOCKSTREAM_API_URL", "https://blockstream.info/api")
HTTP_TIMEOUT = float(getattr(settings, "HTTP_TIMEOUT_SECONDS", 10.0))

# typical single-input P2WPKH spend, and the confirmation target we price for
BTC_TYPICAL_VSIZE = Decimal(141)
BTC_FEE_TARGET_BLOCKS = "6"
SATS_PER_BTC = Decimal(10) ** 8
EVM_TRANSFER_GAS = Decimal(21000)
WEI_PER_ETH = Decimal(10) ** 18
WEI_PER_GWEI = Decimal(10) ** 9


def congestion_for(spec: ChainSpec, gwei: Decimal) -> str:
    medium, high = spec.congestion_gwei
    if gwei > high:
        return "high"
    if gwei > medium:
        return "medium"
    return "low"


class PriceFeedClient:
    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        coingecko_base: str = COINGECKO_BASE,
        hive_api: str = HIVE_API,
        blockstream_api: str = BLOCKSTREAM_API,
    ):
        self.http = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self.coingecko_base = coingecko_base.rstrip("/")
        self.hive_api = hive_api
        self.blockstream_api = blockstream_api.rstrip("/")

    async def close(self):
        await self.http.aclose()

    async def _coingecko(self, ids: Iterable[str]) -> dict:
        r = await self.http.get(
            f"{self.coingecko_base}/simple/price",
            params={"ids": ",".join(ids), "vs_currencies": "usd"},
        )
        r.raise_for_status()
        return r.json()

    async def fetch_hive_price(self) -> Decimal:
        try:
            data = await self._coingecko(["hive"])
            price = to_decimal(data["hive"]["usd"])
            if price > 0:
                return price
            raise ValueError(f"non-positive HIVE price {price}")
        except Exception as exc:
            logger.warning("CoinGecko HIVE price failed, trying HIVE node: %s", exc)
        MET_FEED_FALLBACKS.labels("hive_node").inc()
        try:
            r = await self.http.post(self.hive_api, json={
                "jsonrpc": "2.0",
                "method": "condenser_api.get_current_median_history_price",
                "params": [],
                "id": 1,
            })
            r.raise_for_status()
            result = r.json()["result"]
            base = to_decimal(result["base"].split(" ")[0])
            quote = to_decimal(result["quote"].split(" ")[0])
            price = base / quote
        except Exception as exc:
            logger.error("HIVE price unavailable from every source: %s", exc)
            raise ExternalServiceError("Unable to fetch HIVE price from any source") from exc
        if price <= 0:
            raise ExternalServiceError(f"HIVE node returned non-positive price {price}")
        return price

    async def fetch_crypto_prices(self, chains: Iterable[ChainSpec]) -> dict[ChainType, Decimal]:
        chains = list(chains)
        try:
            data = await self._coingecko(spec.coingecko_id for spec in chains)
        except Exception as exc:
            logger.warning("CoinGecko price batch failed, using static prices: %s", exc)
            MET_FEED_FALLBACKS.labels("static_prices").inc()
            return {spec.chain_type: spec.fallback_price_usd for spec in chains}

        prices = {}
        for spec in chains:
            quote = (data.get(spec.coingecko_id) or {}).get("usd")
            price = to_decimal(quote) if quote is not None else None
            if price is None or price <= 0:
                logger.warning("No CoinGecko price for %s, using static %s", spec.chain_type.value, spec.fallback_price_usd)
                MET_FEED_FALLBACKS.labels("static_prices").inc()
                price = spec.fallback_price_usd
            prices[spec.chain_type] = price
        return prices

    async def _btc_fee(self) -> Decimal:
        r = await self.http.get(f"{self.blockstream_api}/fee-estimates")
        r.raise_for_status()
        sat_per_vb = to_decimal(r.json()[BTC_FEE_TARGET_BLOCKS])
        return sat_per_vb * BTC_TYPICAL_VSIZE / SATS_PER_BTC

    async def gas_price_wei(self, spec: ChainSpec) -> int:
        """eth_gasPrice against the chain's endpoints in order; raises ExternalServiceError if all fail."""
        last_exc = None
        for endpoint in spec.endpoints[:2]:
            try:
                r = await self.http.post(endpoint, json={"jsonrpc": "2.0", "method": "eth_gasPrice", "params": [], "id": 1})
                r.raise_for_status()
                return int(r.json()["result"], 16)
            except Exception as exc:
                logger.info("eth_gasPrice failed on %s (%s): %s", endpoint, spec.chain_type.value, exc)
                last_exc = exc
        raise ExternalServiceError(f"No gas price for {spec.chain_type.value}") from last_exc

    async def _transfer_fee(self, spec: ChainSpec) -> tuple[Decimal, str]:
        if spec.chain_type is ChainType.BTC:
            try:
                return await self._btc_fee(), "normal"
            except Exception as exc:
                logger.warning("Blockstream fee estimate failed, using static BTC fee: %s", exc)
                MET_FEED_FALLBACKS.labels("static_fees").inc()
                return spec.avg_transfer_fee, "unknown"
        if spec.family is ChainFamily.ACCOUNT:
            try:
                wei = await self.gas_price_wei(spec)
            except ExternalServiceError:
                logger.warning("All %s gas price endpoints failed, using static fee", spec.chain_type.value)
                MET_FEED_FALLBACKS.labels("static_fees").inc()
                return spec.avg_transfer_fee, "unknown"
            fee = EVM_TRANSFER_GAS * Decimal(wei) / WEI_PER_ETH
            return fee, congestion_for(spec, Decimal(wei) / WEI_PER_GWEI)
        return spec.avg_transfer_fee, "normal"

    async def estimate_transfer_costs(self, chains: Iterable[ChainSpec], prices: dict) -> dict[ChainType, TransferCost]:
        costs = {}
        for spec in chains:
            fee, congestion = await self._transfer_fee(spec)
            price = prices.get(spec.chain_type) or Decimal(0)
            costs[spec.chain_type] = TransferCost(
                avg_fee_crypto=fee,
                avg_fee_usd=fee * price,
                network_congestion=congestion,
            )
        return costs
