"""
ChainInfoClient - what a client-side signer needs to build a transaction from an address.

get_transaction_info(chain_type, address) dispatches on the chain family:
- BTC: UTXOs and fee rates from Blockstream
- DASH: UTXOs from the Insight mirrors (first that answers)
- ETH / MATIC / BNB: nonce, gas price and balance over JSON-RPC
- SOL: latest blockhash and balance over JSON-RPC
- XMR: placeholder info only

External failures never raise: the answer carries the static defaults and an "error" field.
An unknown chain raises UnsupportedChainError.
"""
import asyncio
import logging
from typing import Any, Optional

import httpx

from paychannel.core.chains import ChainFamily, ChainSpec, ChainType, chain_spec
from paychannel.core.config import settings

logger = logging.getLogger("paychannel.chaininfo")

HTTP_TIMEOUT = float(getattr(settings, "HTTP_TIMEOUT_SECONDS", 10.0))

BTC_DEFAULT_FEE_RATES = {"fast": 20, "medium": 10, "slow": 1}
DASH_FEE_RATES = {"fast": 1000, "medium": 500, "slow": 100}
DASH_MIN_RELAY_FEE = 1000
DASH_DUST_THRESHOLD = 5460
EVM_FALLBACK_GAS_PRICE = 20 * 10 ** 9
EVM_TRANSFER_GAS_LIMIT = 21000
SOL_RENT_EXEMPT_MINIMUM = 890880
XMR_RING_SIZE = 16
XMR_FEE_PRIORITIES = {"priority_1": "0.000012", "priority_2": "0.000024", "priority_3": "0.000036", "priority_4": "0.000048"}


class RPCError(Exception):
    pass


class ChainInfoClient:
    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, blockstream_api: Optional[str] = None):
        self.http = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self.blockstream_api = (blockstream_api or getattr(settings, "BLOCKSTREAM_API_URL", "https://blockstream.info/api")).rstrip("/")
        self._handlers = {
            ChainFamily.ACCOUNT: self._account_info,
            ChainFamily.ED25519: self._solana_info,
            ChainFamily.PRIVACY: self._monero_info,
        }

    async def close(self):
        await self.http.aclose()

    async def get_transaction_info(self, chain_type, address: str) -> dict:
        spec = chain_spec(chain_type)
        if spec.family is ChainFamily.UTXO:
            handler = self._bitcoin_info if spec.chain_type is ChainType.BTC else self._dash_info
        else:
            handler = self._handlers[spec.family]
        return await handler(spec, address)

    async def _get_json(self, url: str) -> Any:
        r = await self.http.get(url)
        r.raise_for_status()
        return r.json()

    async def _rpc(self, url: str, method: str, params: Optional[list] = None) -> Any:
        r = await self.http.post(url, json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params or []})
        r.raise_for_status()
        body = r.json()
        if body.get("error"):
            raise RPCError(f"{method}: {body['error']}")
        return body.get("result")

    async def _bitcoin_info(self, spec: ChainSpec, address: str) -> dict:
        info = {
            "type": "bitcoin",
            "utxos": [],
            "fee_rates": dict(BTC_DEFAULT_FEE_RATES),
            "network": spec.network,
            "address_type": spec.encoding.value,
        }
        try:
            utxos, rates = await asyncio.gather(
                self._get_json(f"{self.blockstream_api}/address/{address}/utxo"),
                self._get_json(f"{self.blockstream_api}/fee-estimates"),
            )
            info["utxos"] = utxos or []
            info["fee_rates"] = {
                "fast": rates.get("1", BTC_DEFAULT_FEE_RATES["fast"]),
                "medium": rates.get("6", BTC_DEFAULT_FEE_RATES["medium"]),
                "slow": rates.get("144", BTC_DEFAULT_FEE_RATES["slow"]),
            }
        except Exception as exc:
            logger.error("Error getting BTC transaction info for %s: %s", address, exc)
            info["error"] = str(exc)
        return info

    async def _dash_info(self, spec: ChainSpec, address: str) -> dict:
        info = {
            "type": "dash",
            "utxos": [],
            "fee_rates": dict(DASH_FEE_RATES),
            "network": spec.network,
            "address_type": spec.encoding.value,
            "min_relay_fee": DASH_MIN_RELAY_FEE,
            "dust_threshold": DASH_DUST_THRESHOLD,
        }
        errors = []
        for base in spec.endpoints:
            try:
                info["utxos"] = await self._get_json(f"{base}/addr/{address}/utxo") or []
                return info
            except Exception as exc:
                logger.warning("Dash insight %s failed for %s: %s", base, address, exc)
                errors.append(f"{base}: {exc}")
        info["error"] = "; ".join(errors) or "no insight endpoints configured"
        return info

    async def _account_info(self, spec: ChainSpec, address: str) -> dict:
        info = {
            "type": "ethereum",
            "nonce": 0,
            "gas_price": str(EVM_FALLBACK_GAS_PRICE),
            "balance": "0",
            "chain_id": spec.evm_chain_id,
            "network": spec.name,
            "rpc_url": spec.endpoints[0] if spec.endpoints else None,
            "gas_limit": str(EVM_TRANSFER_GAS_LIMIT),
        }
        errors = []
        for url in spec.endpoints:
            try:
                nonce, gas_price, balance = await asyncio.gather(
                    self._rpc(url, "eth_getTransactionCount", [address, "pending"]),
                    self._rpc(url, "eth_gasPrice"),
                    self._rpc(url, "eth_getBalance", [address, "latest"]),
                )
                info.update(
                    nonce=int(nonce, 16),
                    gas_price=str(int(gas_price, 16)),
                    balance=str(int(balance, 16)),
                    rpc_url=url,
                )
                return info
            except Exception as exc:
                logger.warning("%s RPC %s failed for %s: %s", spec.chain_type.value, url, address, exc)
                errors.append(f"{url}: {exc}")
        logger.error("Error getting %s transaction info for %s", spec.chain_type.value, address)
        info["error"] = "; ".join(errors)
        return info

    async def _solana_info(self, spec: ChainSpec, address: str) -> dict:
        url = spec.endpoints[0]
        info = {
            "type": "solana",
            "blockhash": None,
            "balance": 0,
            "network": spec.network,
            "rpc_url": url,
            "minimum_rent_exemption": SOL_RENT_EXEMPT_MINIMUM,
        }
        try:
            blockhash, balance = await asyncio.gather(
                self._rpc(url, "getLatestBlockhash"),
                self._rpc(url, "getBalance", [address]),
            )
            info["blockhash"] = ((blockhash or {}).get("value") or {}).get("blockhash")
            info["balance"] = int((balance or {}).get("value") or 0)
        except Exception as exc:
            logger.error("Error getting SOL transaction info for %s: %s", address, exc)
            info["error"] = str(exc)
        return info

    async def _monero_info(self, spec: ChainSpec, address: str) -> dict:
        # addresses are placeholders; explorers are queried for completeness only
        info = {
            "type": "monero",
            "network": spec.network,
            "address_info": None,
            "balance": 0,
            "unlocked_balance": 0,
            "outputs": [],
            "ring_size": XMR_RING_SIZE,
            "fee": dict(XMR_FEE_PRIORITIES),
            "placeholder": True,
            "note": "Monero requires specialized wallet software for transaction creation",
        }
        errors = []
        for template in spec.endpoints:
            url = template.format(address=address)
            try:
                data = await self._get_json(url)
            except Exception as exc:
                logger.warning("Monero explorer %s failed: %s", url, exc)
                errors.append(f"{url}: {exc}")
                continue
            info.update(
                address_info=data,
                balance=data.get("total_received", 0) if isinstance(data, dict) else 0,
                unlocked_balance=data.get("total_received", 0) if isinstance(data, dict) else 0,
                outputs=data.get("outputs", []) if isinstance(data, dict) else [],
            )
            return info
        info["error"] = "; ".join(errors)
        return info
