from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import uvicorn

from jewelry_store.api_client import ApiClient, ApiError
from jewelry_store.config import load_settings, setup_logging
from jewelry_store.models import MaterialSpec, NONE_SENTINEL
from jewelry_store.pricing.calculator import calculate_price
from jewelry_store.pricing.rates import RateTable
from jewelry_store.service import CatalogService

settings = load_settings()
setup_logging(settings.log_level)

app = FastAPI(title="Jewelry Price Quote")


class StoneInput(BaseModel):
    stoneTypeId: str
    caratWeight: float = 0.0


class RateInput(BaseModel):
    metals: Dict[str, float] = {}
    stones: Dict[str, float] = {}


class PriceRequest(BaseModel):
    metalTypeId: str
    metalWeight: float = 0.0
    primaryStone: Optional[StoneInput] = None
    secondaryStones: Optional[List[StoneInput]] = None
    otherStone: Optional[StoneInput] = None
    # 可选：直接传入费率；不传则从商城后端读取目录
    rates: Optional[RateInput] = None


def _to_spec(req: PriceRequest) -> MaterialSpec:
    def slot(stone: Optional[StoneInput]):
        if stone is None:
            return NONE_SENTINEL, 0.0
        return stone.stoneTypeId, stone.caratWeight

    secondary = req.secondaryStones[0] if req.secondaryStones else None
    primary_type, primary_weight = slot(req.primaryStone)
    secondary_type, secondary_weight = slot(secondary)
    other_type, other_weight = slot(req.otherStone)
    return MaterialSpec(
        metal_type=req.metalTypeId,
        metal_weight=req.metalWeight,
        primary_stone=primary_type,
        primary_stone_weight=primary_weight,
        secondary_stone=secondary_type,
        secondary_stone_weight=secondary_weight,
        other_stone=other_type,
        other_stone_weight=other_weight,
    )


def _catalog() -> CatalogService:
    return CatalogService(ApiClient(settings.api_base_url, timeout=settings.api_timeout), settings)


@app.get("/api/exchange-rate")
def exchange_rate():
    return {"rate": _catalog().exchange_rate()}


@app.post("/api/calculate-price")
def calculate(req: PriceRequest):
    catalog = _catalog()
    try:
        if req.rates is not None:
            rates = RateTable(req.rates.metals, req.rates.stones)
        else:
            rates = catalog.rate_table()
    except ApiError as e:
        raise HTTPException(status_code=502, detail=f"目录读取失败: {e}")

    rate = catalog.exchange_rate()
    breakdown = calculate_price(_to_spec(req), rates, overhead_pct=settings.overhead_pct, exchange_rate=rate)

    # 与旧前端保持一致：usd 明细按汇率换算
    inr_lines = {
        "metalCost": breakdown.metal_cost,
        "primaryStoneCost": breakdown.primary_stone_cost,
        "secondaryStoneCost": breakdown.secondary_stone_cost,
        "otherStoneCost": breakdown.other_stone_cost,
        "overhead": breakdown.overhead,
    }
    usd_lines = {k: round(v / rate, 2) for k, v in inr_lines.items()}

    return {
        "success": True,
        "missingRates": breakdown.missing_rates,
        "inr": {"price": breakdown.total, "currency": "INR", "breakdown": inr_lines},
        "usd": {"price": breakdown.total_usd, "currency": "USD", "breakdown": usd_lines},
    }


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
