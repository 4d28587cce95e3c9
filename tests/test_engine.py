"""批量计价与过期结果丢弃测试。"""
import json
import threading
from concurrent.futures import ThreadPoolExecutor

from jewelry_store.models import MaterialSpec, PriceBreakdown, Product
from jewelry_store.pricing.calculator import calculate_price
from jewelry_store.pricing.engine import PriceCalculationTracker, batch_calculate
from jewelry_store.pricing.rates import RateTable

RATES = RateTable({"Gold": 5000}, {"Diamond": 56000})


def test_superseded_result_is_discarded():
    tracker = PriceCalculationTracker()
    old = tracker.begin(MaterialSpec(metal_type="Gold", metal_weight=1))
    new = tracker.begin(MaterialSpec(metal_type="Gold", metal_weight=2))
    assert tracker.is_calculating

    assert tracker.complete(new, PriceBreakdown(total=12500)) is True
    # 旧请求后完成，不得覆盖新结果
    assert tracker.complete(old, PriceBreakdown(total=6250)) is False
    assert tracker.latest.total == 12500
    assert tracker.latest_spec.metal_weight == 2
    assert not tracker.is_calculating


def test_old_result_completing_first_is_still_discarded():
    tracker = PriceCalculationTracker()
    old = tracker.begin(MaterialSpec(metal_weight=1))
    new = tracker.begin(MaterialSpec(metal_weight=2))
    assert tracker.complete(old, PriceBreakdown(total=1)) is False
    assert tracker.latest is None
    assert tracker.is_calculating
    assert tracker.complete(new, PriceBreakdown(total=2)) is True


def test_run_uses_calculator():
    tracker = PriceCalculationTracker()
    result = tracker.run(MaterialSpec(metal_type="Gold", metal_weight=10), lambda s: calculate_price(s, RATES))
    assert result.total == 62500


def test_submit_keeps_latest_when_older_finishes_last():
    tracker = PriceCalculationTracker()
    release_old = threading.Event()

    def slow_then_fast(spec):
        if spec.metal_weight == 1:
            release_old.wait(timeout=5)
        return calculate_price(spec, RATES)

    with ThreadPoolExecutor(max_workers=2) as pool:
        f_old = tracker.submit(MaterialSpec(metal_type="Gold", metal_weight=1), slow_then_fast, pool)
        f_new = tracker.submit(MaterialSpec(metal_type="Gold", metal_weight=2), slow_then_fast, pool)
        assert f_new.result(timeout=5) is True
        release_old.set()
        assert f_old.result(timeout=5) is False

    assert tracker.latest.metal_cost == 10000


def test_batch_calculate_rows():
    products = [
        Product(id=1, name="Ring", details=json.dumps({"metalType": "Gold", "metalWeight": 10})),
        Product(id=2, name="Broken", details="{bad json"),
    ]
    rows = batch_calculate(products, RATES, overhead_pct=0.25, exchange_rate=83)
    assert rows[0]["total"] == 62500
    assert rows[0]["price_source"] == "calculated"
    assert rows[1]["metalType"] == "Unknown"
    assert rows[1]["total"] == 0


def test_batch_calculate_without_rates_uses_cached_snapshot():
    products = [
        Product(id=1, name="Ring", details={"additionalData": {"calculatedPriceINR": "70000", "calculatedPriceUSD": 843}}),
        Product(id=2, name="Chain", details={}, calculated_price_inr=1200.0, calculated_price_usd=15.0),
    ]
    rows = batch_calculate(products, RateTable())
    assert rows[0]["total"] == 70000
    assert rows[0]["totalUSD"] == 843
    assert rows[1]["total"] == 1200.0
    assert all(r["price_source"] == "cached" for r in rows)


def test_batch_calculate_records_errors_per_row():
    def broken_rates():
        class Broken(RateTable):
            def metal_rate(self, name):
                raise RuntimeError("catalog exploded")
        return Broken({"Gold": 1})

    rows = batch_calculate([Product(id=1, name="X", details={"metalType": "Gold"})], broken_rates())
    assert rows[0]["error"] == "catalog exploded"
