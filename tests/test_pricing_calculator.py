from decimal import Decimal

import pytest

from paychannel.core.errors import DataUnavailable
from paychannel.pricing.calculator import ChainRate, TransferCost, compute_pricing


def test_account_creation_cost_example():
    result = compute_pricing(
        Decimal("0.30"),
        {"ETH": Decimal("2500")},
        {"ETH": TransferCost(avg_fee_crypto=Decimal("0.002"), avg_fee_usd=Decimal("5.00"))},
    )
    assert result.base_cost_usd == Decimal("0.90")
    assert result.account_creation_cost_usd == Decimal("1.35")
    rate = result.crypto_rates["ETH"]
    assert rate.network_fee_surcharge_usd == Decimal("1.00")
    assert rate.final_cost_usd == Decimal("2.35")
    assert rate.amount_needed == Decimal("0.00094")
    assert rate.total_amount == Decimal("0.00294")
    assert rate.transfer_fee == Decimal("0.002")


def test_crypto_amount_rounds_up():
    result = compute_pricing(
        Decimal("0.30"),
        {"BTC": Decimal("3")},
        {"BTC": TransferCost(Decimal(0), Decimal(0))},
    )
    rate = result.crypto_rates["BTC"]
    # 1.35 / 3 is exact; 1.35 / 7 is not and must never round down
    assert rate.amount_needed == Decimal("0.45")
    odd = compute_pricing(Decimal("0.30"), {"BTC": Decimal("7")}, {}).crypto_rates["BTC"]
    assert odd.amount_needed * 7 >= Decimal("1.35")
    assert odd.amount_needed.as_tuple().exponent == -18


def test_higher_fee_never_lowers_cost():
    costs = [
        compute_pricing(Decimal("0.25"), {"SOL": Decimal("100")}, {"SOL": TransferCost(Decimal("0.01"), fee)})
        .crypto_rates["SOL"].final_cost_usd
        for fee in (Decimal("0"), Decimal("0.5"), Decimal("2"), Decimal("10"))
    ]
    assert costs == sorted(costs)


def test_missing_transfer_cost_means_no_surcharge():
    rate = compute_pricing(Decimal("1"), {"DASH": Decimal("30")}, {}).crypto_rates["DASH"]
    assert rate.network_fee_surcharge_usd == 0
    assert rate.final_cost_usd == Decimal("4.5")


@pytest.mark.parametrize("price", [Decimal("0"), Decimal("-1"), None])
def test_bad_chain_price(price):
    with pytest.raises(DataUnavailable):
        compute_pricing(Decimal("0.30"), {"ETH": price}, {})


@pytest.mark.parametrize("hive", [None, 0, "nan-ish"])
def test_bad_hive_price(hive):
    with pytest.raises(DataUnavailable):
        compute_pricing(hive, {"ETH": Decimal("2500")}, {})


def test_rates_serialize_as_strings():
    rate = compute_pricing(Decimal("0.30"), {"ETH": Decimal("2500")}, {}).crypto_rates["ETH"]
    data = rate.as_json()
    assert all(isinstance(v, str) for v in data.values())
    assert ChainRate.from_json(data) == rate
