"""
定价计算引擎模块。
提供批量计价，以及按输入跟踪进行中计算、丢弃过期结果的调度器。
"""
import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import astuple
from typing import Any, Callable, Dict, List, Optional

from jewelry_store.details import cached_prices, extract_product_spec
from jewelry_store.models import MaterialSpec, PriceBreakdown, Product
from jewelry_store.pricing.calculator import calculate_price
from jewelry_store.pricing.rates import RateTable

logger = logging.getLogger(__name__)


def batch_calculate(
    products: List[Product],
    rates: RateTable,
    **params: Any
) -> List[Dict[str, Any]]:
    """
    批量计算商品价格，返回扁平化的字典列表 (用于表格展示与导出)。

    参数:
    - products: 商品列表。
    - rates: 费率表；为空时回退使用 details 中缓存的价格快照。
    - params: 透传给 calculate_price 的参数 (overhead_pct, exchange_rate)。
    """
    rows = []

    for product in products:
        # 1. 准备基础数据
        row: Dict[str, Any] = {
            "id": product.id,
            "name": product.name,
            "base_price": product.base_price,
            "is_featured": product.is_featured,
        }

        # 2. 执行计算
        try:
            spec = extract_product_spec(product)
            row.update(spec.to_dict())

            if rates:
                breakdown = calculate_price(spec, rates, **params)
                row.update(breakdown.to_dict())
                row["price_source"] = "calculated"
            else:
                # 没有目录数据时只能展示缓存快照
                inr, usd = cached_prices(product.details)
                row["total"] = inr if inr is not None else product.calculated_price_inr
                row["totalUSD"] = usd if usd is not None else product.calculated_price_usd
                row["price_source"] = "cached"
        except Exception as e:
            # 记录错误信息，方便排查，不影响其他商品
            logger.exception("商品 %s 计价失败", product.id)
            row["error"] = str(e)

        rows.append(row)

    return rows


class PriceCalculationTracker:
    """
    价格计算调度器。
    每次计算以其输入 (MaterialSpec) 为键登记一张票据；只有最新登记的票据完成时结果才被采纳，
    被后续输入取代的旧结果直接丢弃，避免过期结果覆盖新结果。
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._seq = 0
        self._latest_ticket = 0
        self._pending: Dict[int, tuple] = {}
        self.latest: Optional[PriceBreakdown] = None
        self.latest_spec: Optional[MaterialSpec] = None

    @property
    def is_calculating(self) -> bool:
        with self._lock:
            return self._latest_ticket in self._pending

    def begin(self, spec: MaterialSpec) -> int:
        """登记一次计算，返回票据号。"""
        with self._lock:
            self._seq += 1
            ticket = self._seq
            self._pending[ticket] = astuple(spec)
            self._latest_ticket = ticket
            return ticket

    def complete(self, ticket: int, result: Optional[PriceBreakdown]) -> bool:
        """
        提交计算结果。
        返回 True 表示结果被采纳；票据已被更新的输入取代时返回 False。
        result 为 None 表示计算失败，仅结束"计算中"状态。
        """
        with self._lock:
            key = self._pending.pop(ticket, None)
            if ticket != self._latest_ticket:
                logger.debug("丢弃过期的计算结果 ticket=%s (最新=%s)", ticket, self._latest_ticket)
                return False
            if result is None:
                return False
            self.latest = result
            if key is not None:
                self.latest_spec = MaterialSpec(*key)
            return True

    def run(self, spec: MaterialSpec, func: Callable[[MaterialSpec], PriceBreakdown]) -> Optional[PriceBreakdown]:
        """同步执行一次计算，返回被采纳后的最新结果。"""
        ticket = self.begin(spec)
        try:
            result = func(spec)
        except Exception:
            self.complete(ticket, None)
            raise
        self.complete(ticket, result)
        return self.latest

    def submit(
        self,
        spec: MaterialSpec,
        func: Callable[[MaterialSpec], PriceBreakdown],
        executor: Executor,
    ) -> Future:
        """在线程池中执行计算；Future 的结果为该次计算是否被采纳。"""
        ticket = self.begin(spec)

        def _task() -> bool:
            try:
                result = func(spec)
            except Exception:
                logger.exception("价格计算失败")
                self.complete(ticket, None)
                return False
            return self.complete(ticket, result)

        return executor.submit(_task)
