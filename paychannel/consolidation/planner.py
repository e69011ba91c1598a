"""
ConsolidationPlanner - fee estimates and plans for sweeping many custody addresses into one.

Nothing here signs or broadcasts. A plan lists the source addresses, the fee for the
chosen priority and what an operator's signing tool needs per chain family. Private
keys only leave custody through release_signing_keys, which requires an explicit
authorizer and writes one audit row per key.

Fee models (low / medium / high tiers come from the chain table):
- UTXO:    size = 10 + 148 * inputs + 34 bytes, fee = ceil(size * rate per byte)
- account: gas = 21000 + 5000 * addresses, fee = gas * gwei tier
- ed25519: fixed lamports per address
- privacy: fixed XMR per address
"""
import logging
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal
from typing import Iterable, Optional

from paychannel.core.chains import ChainFamily, ChainType, chain_spec
from paychannel.keys.custody import KeyCustodyStore

logger = logging.getLogger("paychannel.consolidation.planner")

PRIORITIES = ("low", "medium", "high")

UTXO_BASE_BYTES = 10
UTXO_INPUT_BYTES = 148
UTXO_OUTPUT_BYTES = 34
EVM_BASE_GAS = 21000
EVM_GAS_PER_SEND = 5000

INSTRUCTIONS = {
    ChainFamily.UTXO: {
        "method": "UTXO_CONSOLIDATION",
        "description": "Create a single transaction with every source address as an input and the destination as the only output",
        "requirements": ["Private keys for all source addresses", "UTXO data for all addresses", "Fee calculation"],
    },
    ChainFamily.ACCOUNT: {
        "method": "SEQUENTIAL_TRANSFERS",
        "description": "Send one transaction from each source address to the destination address",
        "requirements": ["Private keys for all source addresses", "Current nonce for each address", "Gas price data"],
    },
    ChainFamily.ED25519: {
        "method": "BATCH_TRANSFER",
        "description": "Batch the transfers into as few transactions as the size limit allows, or send them individually",
        "requirements": ["Private keys for all source addresses", "Recent blockhash", "Rent exemption data"],
    },
    ChainFamily.PRIVACY: {
        "method": "SPECIALIZED_WALLET",
        "description": "Monero requires dedicated wallet software; placeholder addresses cannot be swept",
        "requirements": ["Monero wallet software", "View keys and spend keys", "Ring signature handling"],
    },
}


@dataclass(frozen=True)
class FeeEstimate:
    low: Decimal
    medium: Decimal
    high: Decimal
    currency: str
    tx_size: Optional[int] = None
    gas_limit: Optional[int] = None

    def for_priority(self, priority: str) -> Decimal:
        if priority not in PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}, got {priority!r}")
        return getattr(self, priority)


@dataclass(frozen=True)
class ConsolidationPlan:
    chain_type: ChainType
    source_addresses: list
    destination_address: str
    priority: str
    estimated_fee: Decimal
    fee_estimate: FeeEstimate
    instructions: dict

    @property
    def address_count(self) -> int:
        return len(self.source_addresses)


@dataclass(frozen=True)
class SigningKey:
    address: str
    derivation_path: str
    private_key: str = field(repr=False)


def estimate_fee(chain_type, address_count: int) -> FeeEstimate:
    spec = chain_spec(chain_type)
    if isinstance(address_count, bool) or not isinstance(address_count, int) or address_count < 1:
        raise ValueError(f"address_count must be a positive integer, got {address_count!r}")
    n = address_count

    if spec.family is ChainFamily.UTXO:
        size = UTXO_BASE_BYTES + UTXO_INPUT_BYTES * n + UTXO_OUTPUT_BYTES
        low, medium, high = ((size * rate).to_integral_value(rounding=ROUND_CEILING) for rate in spec.fee_tiers)
        return FeeEstimate(low, medium, high, spec.fee_currency, tx_size=size)
    if spec.family is ChainFamily.ACCOUNT:
        gas = EVM_BASE_GAS + EVM_GAS_PER_SEND * n
        low, medium, high = (gas * rate for rate in spec.fee_tiers)
        return FeeEstimate(low, medium, high, spec.fee_currency, gas_limit=gas)
    # ed25519 and privacy chains charge a flat fee per transfer
    low, medium, high = (rate * n for rate in spec.fee_tiers)
    return FeeEstimate(low, medium, high, spec.fee_currency)


def consolidation_instructions(chain_type) -> dict:
    return dict(INSTRUCTIONS[chain_spec(chain_type).family])


def plan_consolidation(chain_type, source_addresses: Iterable, destination_address: str, priority: str = "medium") -> ConsolidationPlan:
    """source_addresses may be address strings or custody rows (anything with .address)."""
    spec = chain_spec(chain_type)
    sources = [getattr(item, "address", item) for item in source_addresses]
    if not destination_address:
        raise ValueError("destination_address is required")
    fee = estimate_fee(spec.chain_type, len(sources))
    plan = ConsolidationPlan(
        chain_type=spec.chain_type,
        source_addresses=sources,
        destination_address=destination_address,
        priority=priority,
        estimated_fee=fee.for_priority(priority),
        fee_estimate=fee,
        instructions=consolidation_instructions(spec.chain_type),
    )
    logger.info(
        "Consolidation plan %s: %s address(es) -> %s, %s fee %s %s",
        spec.chain_type.value, plan.address_count, destination_address, priority, plan.estimated_fee, fee.currency,
    )
    return plan


class ConsolidationPlanner:
    def __init__(self, custody: KeyCustodyStore, session_factory):
        self._custody = custody
        self._session_factory = session_factory

    estimate_fee = staticmethod(estimate_fee)
    plan_consolidation = staticmethod(plan_consolidation)

    async def list_sources(self, chain_type) -> list:
        """Every custody row of the chain, oldest first. Balances are not checked here."""
        chain = chain_spec(chain_type).chain_type.value
        async with self._session_factory() as session:
            return await self._custody.list_addresses(session, chain)

    async def release_signing_keys(self, chain_type, addresses: Iterable[str], authorized_by: str) -> list[SigningKey]:
        if not authorized_by:
            raise ValueError("authorized_by is required to release private keys")
        chain = chain_spec(chain_type).chain_type.value
        wanted = list(dict.fromkeys(addresses))
        async with self._session_factory() as session:
            async with session.begin():
                rows = await self._custody.list_addresses(session, chain, wanted)
                missing = set(wanted) - {row.address for row in rows}
                if missing:
                    raise ValueError(f"Unknown {chain} custody address(es): {', '.join(sorted(missing))}")
                keys = [
                    SigningKey(row.address, row.derivation_path, self._custody.decrypt_private_key(session, row, authorized_by))
                    for row in rows
                ]
        logger.warning("Released %s %s signing key(s) to %s", len(keys), chain, authorized_by)
        return keys
