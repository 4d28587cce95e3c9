"""定价计算器测试：场景验算 + 关键性质。"""
import pytest

from jewelry_store.models import MaterialSpec
from jewelry_store.pricing.calculator import calculate_price, round_half_up
from jewelry_store.pricing.rates import RateTable
from jewelry_store.models import MetalType, StoneType

RATES = RateTable({"Gold": 5000, "Silver": 80}, {"Diamond": 56000, "Ruby": 3000})


def test_gold_only_scenario():
    # 10g × 5000 = 50000；管理费 25% = 12500；总价 62500
    b = calculate_price(MaterialSpec(metal_type="Gold", metal_weight=10), RATES)
    assert b.metal_cost == 50000
    assert b.stone_costs == (0, 0, 0)
    assert b.subtotal == 50000
    assert b.overhead == 12500
    assert b.total == 62500
    assert b.total_usd == round_half_up(62500 / 83)
    assert b.missing_rates == []


@pytest.mark.parametrize("sentinel", ["None", "none", "none_selected", "", None])
@pytest.mark.parametrize("weight", [0.0, 1.5, 999.0])
def test_unused_stone_slot_costs_nothing(sentinel, weight):
    spec = MaterialSpec(
        metal_type="Gold", metal_weight=1,
        primary_stone=sentinel, primary_stone_weight=weight,
        secondary_stone=sentinel, secondary_stone_weight=weight,
        other_stone=sentinel, other_stone_weight=weight,
    )
    b = calculate_price(spec, RATES)
    assert b.stone_costs == (0.0, 0.0, 0.0)
    assert b.subtotal == 5000


def test_stone_lines_and_totals():
    spec = MaterialSpec(
        metal_type="gold", metal_weight=2.5,
        primary_stone="Diamond", primary_stone_weight=0.3,
        secondary_stone="RUBY", secondary_stone_weight=1.2,
    )
    b = calculate_price(spec, RATES)
    assert b.metal_cost == pytest.approx(2.5 * 5000)
    assert b.primary_stone_cost == pytest.approx(0.3 * 56000)
    assert b.secondary_stone_cost == pytest.approx(1.2 * 3000)
    assert b.other_stone_cost == 0
    assert b.subtotal == pytest.approx(b.metal_cost + sum(b.stone_costs))
    assert b.overhead == round_half_up(b.subtotal * 0.25)
    assert b.total == pytest.approx(b.subtotal + b.overhead)


def test_unknown_types_give_partial_breakdown():
    spec = MaterialSpec(
        metal_type="Platinum", metal_weight=3,
        primary_stone="Ruby", primary_stone_weight=2,
        secondary_stone="Moonstone", secondary_stone_weight=1,
    )
    b = calculate_price(spec, RATES)
    assert b.metal_cost == 0
    assert b.primary_stone_cost == 6000
    assert b.secondary_stone_cost == 0
    assert b.missing_rates == ["Platinum", "Moonstone"]
    assert b.is_partial
    assert b.total == 6000 + 1500


def test_overhead_rounds_half_up():
    # 小计 10 → 管理费 2.5 → 3 (银行家舍入会得到 2)
    b = calculate_price(MaterialSpec(metal_type="Silver", metal_weight=0.125), RATES)
    assert b.subtotal == pytest.approx(10)
    assert b.overhead == 3
    assert b.total == pytest.approx(13)


def test_invalid_weights_are_treated_as_zero():
    spec = MaterialSpec(metal_type="Gold", metal_weight=-4, primary_stone="Diamond", primary_stone_weight=float("nan"))
    b = calculate_price(spec, RATES)
    assert b.total == 0


def test_custom_overhead_and_exchange_rate():
    b = calculate_price(MaterialSpec(metal_type="Gold", metal_weight=10), RATES, overhead_pct=0.28, exchange_rate=84)
    assert b.overhead == 14000
    assert b.total == 64000
    assert b.total_usd == round_half_up(64000 / 84)


def test_rate_table_from_catalog_skips_inactive_and_supports_ids():
    rates = RateTable.from_catalog(
        [MetalType(id=1, name="Gold", price_modifier=5000), MetalType(id=2, name="Rose Gold", price_modifier=4000, is_active=False)],
        [StoneType(id=9, name="Emerald", price_modifier=3500)],
    )
    assert rates.metal_rate("GOLD") == 5000
    assert rates.metal_rate(1) == 5000
    assert rates.metal_rate("Rose Gold") is None
    assert rates.stone_rate("9") == 3500
    assert rates.metal_names() == ["Gold"]
