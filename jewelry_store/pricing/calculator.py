"""
首饰定价计算模块。
按 金属克重 × 每克单价 + Σ(宝石克拉 × 每克拉单价) 计算材料小计，再加固定比例管理费得到总价。
"""
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from jewelry_store.config import DEFAULT_OVERHEAD_PCT, DEFAULT_USD_TO_INR
from jewelry_store.models import MaterialSpec, PriceBreakdown, is_unused_stone
from jewelry_store.pricing.rates import RateTable


def round_half_up(value: float) -> float:
    """四舍五入到整数 (Python 内置 round 是银行家舍入，这里需要 .5 进位)。"""
    return float(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _safe_weight(value) -> float:
    try:
        weight = float(value or 0.0)
    except (ValueError, TypeError):
        return 0.0
    if math.isnan(weight) or math.isinf(weight) or weight < 0:
        return 0.0
    return weight


def calculate_price(
    spec: MaterialSpec,
    rates: RateTable,
    overhead_pct: float = DEFAULT_OVERHEAD_PCT,
    exchange_rate: float = DEFAULT_USD_TO_INR,
) -> PriceBreakdown:
    """
    计算价格明细。

    规则:
    1. 金属成本 = 克重 × 每克单价；宝石成本 = 克拉 × 每克拉单价。
    2. 宝石位为"未使用"时成本恒为 0，无论填写的重量是多少。
    3. 目录中查不到费率时，该行成本按 0 计并记录在 missing_rates 中，不中断整体计算。
    4. 管理费 = round(小计 × overhead_pct)；总价 = 小计 + 管理费。
    5. 美元总价 = round(总价 / 汇率)。
    """
    breakdown = PriceBreakdown()

    # 1. 金属
    metal_weight = _safe_weight(spec.metal_weight)
    metal_rate: Optional[float] = rates.metal_rate(spec.metal_type)
    if metal_rate is None:
        if metal_weight > 0:
            breakdown.missing_rates.append(spec.metal_type)
        metal_rate = 0.0
    breakdown.metal_cost = metal_weight * metal_rate

    # 2. 宝石
    for slot, stone_type, weight in spec.stone_slots():
        cost = 0.0
        if not is_unused_stone(stone_type):
            rate = rates.stone_rate(stone_type)
            if rate is None:
                breakdown.missing_rates.append(stone_type)
            else:
                cost = _safe_weight(weight) * rate
        setattr(breakdown, f"{slot}_stone_cost", cost)

    # 3. 汇总
    breakdown.subtotal = breakdown.metal_cost + sum(breakdown.stone_costs)
    breakdown.overhead = round_half_up(breakdown.subtotal * overhead_pct)
    breakdown.total = breakdown.subtotal + breakdown.overhead
    breakdown.total_usd = round_half_up(breakdown.total / exchange_rate) if exchange_rate > 0 else 0.0

    return breakdown
