"""
Supported chains and their per-network parameters.

Every place that needs chain-specific behaviour (derivation, transfer-fee
estimation, consolidation, chain info) resolves a ChainSpec from CHAINS and
dispatches on its family/encoding instead of switching on strings.
"""
import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

from paychannel.core.errors import UnsupportedChainError


class ChainFamily(str, enum.Enum):
    UTXO = "utxo"
    ACCOUNT = "account"
    ED25519 = "ed25519"
    PRIVACY = "privacy"


class ChainType(str, enum.Enum):
    BTC = "BTC"
    DASH = "DASH"
    ETH = "ETH"
    MATIC = "MATIC"
    BNB = "BNB"
    SOL = "SOL"
    XMR = "XMR"


class AddressEncoding(str, enum.Enum):
    P2WPKH = "P2WPKH"
    P2PKH = "P2PKH"
    EOA = "EOA"
    ED25519 = "ED25519"
    XMR_PLACEHOLDER = "XMR_PLACEHOLDER"


@dataclass(frozen=True)
class ChainSpec:
    chain_type: ChainType
    family: ChainFamily
    name: str
    coin_type: int
    encoding: AddressEncoding
    decimals: int
    confirmations_required: int
    block_time_seconds: float
    coingecko_id: str
    fallback_price_usd: Decimal
    avg_transfer_fee: Decimal
    # consolidation fee tiers (low, medium, high) in fee_currency per byte / gwei / flat
    fee_tiers: Tuple[Decimal, Decimal, Decimal]
    fee_currency: str
    endpoints: Tuple[str, ...] = ()
    evm_chain_id: Optional[int] = None
    bech32_hrp: Optional[str] = None
    p2pkh_net_ver: Optional[bytes] = None
    # gwei thresholds (medium, high) for congestion tagging on account chains
    congestion_gwei: Tuple[int, int] = (50, 100)
    priced: bool = True
    network: str = field(default="mainnet")

    @property
    def derivation_prefix(self) -> str:
        return f"m/44'/{self.coin_type}'/0'/0/"

    def derivation_path(self, index: int) -> str:
        return f"{self.derivation_prefix}{index}"


CHAINS = {
    ChainType.BTC: ChainSpec(
        chain_type=ChainType.BTC,
        family=ChainFamily.UTXO,
        name="Bitcoin",
        coin_type=0,
        encoding=AddressEncoding.P2WPKH,
        decimals=8,
        confirmations_required=2,
        block_time_seconds=600,
        coingecko_id="bitcoin",
        fallback_price_usd=Decimal("60000"),
        avg_transfer_fee=Decimal("0.00002"),
        fee_tiers=(Decimal(1), Decimal(5), Decimal(10)),
        fee_currency="sats",
        endpoints=("https://blockstream.info/api",),
        bech32_hrp="bc",
    ),
    ChainType.DASH: ChainSpec(
        chain_type=ChainType.DASH,
        family=ChainFamily.UTXO,
        name="Dash",
        coin_type=5,
        encoding=AddressEncoding.P2PKH,
        decimals=8,
        confirmations_required=6,
        block_time_seconds=150,
        coingecko_id="dash",
        fallback_price_usd=Decimal("30"),
        avg_transfer_fee=Decimal("0.00001"),
        fee_tiers=(Decimal(100), Decimal(500), Decimal(1000)),
        fee_currency="duffs",
        endpoints=(
            "https://insight.dash.org/insight-api",
            "https://explorer.dash.org/insight-api",
        ),
        p2pkh_net_ver=b"\x4c",
    ),
    ChainType.ETH: ChainSpec(
        chain_type=ChainType.ETH,
        family=ChainFamily.ACCOUNT,
        name="Ethereum",
        coin_type=60,
        encoding=AddressEncoding.EOA,
        decimals=18,
        confirmations_required=2,
        block_time_seconds=12,
        coingecko_id="ethereum",
        fallback_price_usd=Decimal("2500"),
        avg_transfer_fee=Decimal("0.002"),
        fee_tiers=(Decimal(20), Decimal(50), Decimal(100)),
        fee_currency="gwei",
        endpoints=("https://eth.llamarpc.com", "https://ethereum-rpc.publicnode.com"),
        evm_chain_id=1,
        congestion_gwei=(50, 100),
    ),
    ChainType.MATIC: ChainSpec(
        chain_type=ChainType.MATIC,
        family=ChainFamily.ACCOUNT,
        name="Polygon",
        coin_type=60,
        encoding=AddressEncoding.EOA,
        decimals=18,
        confirmations_required=10,
        block_time_seconds=2,
        coingecko_id="matic-network",
        fallback_price_usd=Decimal("0.8"),
        avg_transfer_fee=Decimal("0.01"),
        fee_tiers=(Decimal(20), Decimal(50), Decimal(100)),
        fee_currency="gwei",
        endpoints=("https://polygon-rpc.com", "https://polygon.llamarpc.com"),
        evm_chain_id=137,
        congestion_gwei=(200, 500),
    ),
    ChainType.BNB: ChainSpec(
        chain_type=ChainType.BNB,
        family=ChainFamily.ACCOUNT,
        name="BNB Smart Chain",
        coin_type=60,
        encoding=AddressEncoding.EOA,
        decimals=18,
        confirmations_required=3,
        block_time_seconds=3,
        coingecko_id="binancecoin",
        fallback_price_usd=Decimal("300"),
        avg_transfer_fee=Decimal("0.0005"),
        fee_tiers=(Decimal(20), Decimal(50), Decimal(100)),
        fee_currency="gwei",
        endpoints=("https://bsc-dataseed.binance.org", "https://bsc-dataseed1.defibit.io"),
        evm_chain_id=56,
        congestion_gwei=(5, 10),
    ),
    ChainType.SOL: ChainSpec(
        chain_type=ChainType.SOL,
        family=ChainFamily.ED25519,
        name="Solana",
        coin_type=501,
        encoding=AddressEncoding.ED25519,
        decimals=9,
        confirmations_required=1,
        block_time_seconds=0.4,
        coingecko_id="solana",
        fallback_price_usd=Decimal("100"),
        avg_transfer_fee=Decimal("0.000005"),
        fee_tiers=(Decimal(5000), Decimal(5000), Decimal(5000)),
        fee_currency="lamports",
        endpoints=("https://api.mainnet-beta.solana.com", "https://solana-api.projectserum.com"),
        network="mainnet-beta",
    ),
    ChainType.XMR: ChainSpec(
        chain_type=ChainType.XMR,
        family=ChainFamily.PRIVACY,
        name="Monero",
        coin_type=128,
        encoding=AddressEncoding.XMR_PLACEHOLDER,
        decimals=12,
        confirmations_required=10,
        block_time_seconds=120,
        coingecko_id="monero",
        fallback_price_usd=Decimal("150"),
        avg_transfer_fee=Decimal("0.000024"),
        fee_tiers=(Decimal("0.000012"), Decimal("0.000024"), Decimal("0.000048")),
        fee_currency="XMR",
        endpoints=(
            "https://xmrchain.net/api/outputs?address={address}&limit=10",
            "https://moneroblocks.info/api/get_address_info/{address}",
        ),
        priced=False,
    ),
}


def chain_spec(chain_type) -> ChainSpec:
    """Resolve a ChainType or case-insensitive symbol to its ChainSpec."""
    if isinstance(chain_type, ChainType):
        return CHAINS[chain_type]
    try:
        return CHAINS[ChainType(str(chain_type).strip().upper())]
    except ValueError:
        raise UnsupportedChainError(chain_type) from None


def priced_chains() -> list[ChainSpec]:
    return [spec for spec in CHAINS.values() if spec.priced]
