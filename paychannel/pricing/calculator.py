"""
Account-creation pricing math. Pure functions over Decimal; no IO.

base cost          = HIVE price * 3
account creation   = base cost * 1.5
per chain:
  surcharge        = transfer fee (USD) * 0.2
  final cost       = account creation + surcharge
  amount needed    = final cost / chain price
  total amount     = amount needed + transfer fee (crypto)

USD amounts are quantized to 6 places (half-up), crypto amounts to 18 places,
always rounded up so the payer is never asked for less than the cost.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, ROUND_UP, Decimal, InvalidOperation
from typing import Mapping

from paychannel.core.errors import DataUnavailable

HIVE_MULTIPLIER = Decimal("3")
CREATION_MARKUP = Decimal("1.5")
NETWORK_FEE_SURCHARGE = Decimal("0.2")

USD_QUANT = Decimal("0.000001")
CRYPTO_QUANT = Decimal("0.000000000000000001")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        # str() so floats from JSON keep their printed value
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise DataUnavailable(f"Not a number: {value!r}") from None


def quantize_usd(value: Decimal) -> Decimal:
    return value.quantize(USD_QUANT, rounding=ROUND_HALF_UP)


def quantize_crypto(value: Decimal) -> Decimal:
    return value.quantize(CRYPTO_QUANT, rounding=ROUND_UP)


@dataclass(frozen=True)
class TransferCost:
    avg_fee_crypto: Decimal
    avg_fee_usd: Decimal
    network_congestion: str = "normal"

    def as_json(self) -> dict:
        return {
            "avg_fee_crypto": str(self.avg_fee_crypto),
            "avg_fee_usd": str(self.avg_fee_usd),
            "network_congestion": self.network_congestion,
        }

    @classmethod
    def from_json(cls, data: Mapping) -> "TransferCost":
        return cls(
            avg_fee_crypto=to_decimal(data["avg_fee_crypto"]),
            avg_fee_usd=to_decimal(data["avg_fee_usd"]),
            network_congestion=data.get("network_congestion", "normal"),
        )


@dataclass(frozen=True)
class ChainRate:
    price_usd: Decimal
    transfer_fee: Decimal
    network_fee_surcharge_usd: Decimal
    final_cost_usd: Decimal
    amount_needed: Decimal
    total_amount: Decimal

    def as_json(self) -> dict:
        return {
            "price_usd": str(self.price_usd),
            "transfer_fee": str(self.transfer_fee),
            "network_fee_surcharge_usd": str(self.network_fee_surcharge_usd),
            "final_cost_usd": str(self.final_cost_usd),
            "amount_needed": str(self.amount_needed),
            "total_amount": str(self.total_amount),
        }

    @classmethod
    def from_json(cls, data: Mapping) -> "ChainRate":
        return cls(**{name: to_decimal(data[name]) for name in (
            "price_usd", "transfer_fee", "network_fee_surcharge_usd",
            "final_cost_usd", "amount_needed", "total_amount",
        )})


@dataclass(frozen=True)
class PricingResult:
    hive_price_usd: Decimal
    base_cost_usd: Decimal
    account_creation_cost_usd: Decimal
    crypto_rates: dict
    transfer_costs: dict


def compute_chain_rate(account_creation_cost_usd: Decimal, price_usd, transfer_cost: TransferCost) -> ChainRate:
    price = to_decimal(price_usd)
    if price <= 0:
        raise DataUnavailable(f"Price must be positive, got {price}")
    surcharge = quantize_usd(transfer_cost.avg_fee_usd * NETWORK_FEE_SURCHARGE)
    final_cost = quantize_usd(account_creation_cost_usd + surcharge)
    amount_needed = quantize_crypto(final_cost / price)
    return ChainRate(
        price_usd=price,
        transfer_fee=transfer_cost.avg_fee_crypto,
        network_fee_surcharge_usd=surcharge,
        final_cost_usd=final_cost,
        amount_needed=amount_needed,
        total_amount=quantize_crypto(amount_needed + transfer_cost.avg_fee_crypto),
    )


def compute_pricing(hive_price, prices: Mapping[str, object], transfer_costs: Mapping[str, TransferCost]) -> PricingResult:
    """
    prices and transfer_costs are keyed by chain symbol. A chain without a transfer
    cost is priced with a zero fee; a zero or missing price raises DataUnavailable.
    """
    hive = to_decimal(hive_price) if hive_price is not None else None
    if hive is None or hive <= 0:
        raise DataUnavailable(f"HIVE price unavailable: {hive_price!r}")
    base_cost = quantize_usd(hive * HIVE_MULTIPLIER)
    creation_cost = quantize_usd(base_cost * CREATION_MARKUP)

    zero = TransferCost(Decimal(0), Decimal(0), "unknown")
    rates = {}
    for symbol, price in prices.items():
        if price is None:
            raise DataUnavailable(f"No price for {symbol}")
        rates[symbol] = compute_chain_rate(creation_cost, price, transfer_costs.get(symbol, zero))

    return PricingResult(
        hive_price_usd=hive,
        base_cost_usd=base_cost,
        account_creation_cost_usd=creation_cost,
        crypto_rates=rates,
        transfer_costs=dict(transfer_costs),
    )
