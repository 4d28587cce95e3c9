"""
费率表模块。
由后台可配置的金属/宝石目录构建，提供按名称或 ID 的单价查询 (金属为每克，宝石为每克拉)。
"""
from typing import Dict, Iterable, List, Optional, Union

from jewelry_store.models import CatalogEntry


class RateTable:
    """
    费率表：名称大小写不敏感，同时支持用目录 ID (整数或数字字符串) 查询。
    查不到时返回 None，由计算器决定如何处理。
    """

    def __init__(
        self,
        metal_rates: Optional[Dict[str, float]] = None,
        stone_rates: Optional[Dict[str, float]] = None,
    ):
        metal_rates = metal_rates or {}
        stone_rates = stone_rates or {}
        self._metals = {self._key(k): float(v) for k, v in metal_rates.items()}
        self._stones = {self._key(k): float(v) for k, v in stone_rates.items()}
        # 保留原始大小写，供界面下拉框展示
        self._metal_names = sorted(str(k) for k in metal_rates if not str(k).isdigit())
        self._stone_names = sorted(str(k) for k in stone_rates if not str(k).isdigit())

    @classmethod
    def from_catalog(
        cls,
        metal_types: Iterable[CatalogEntry],
        stone_types: Iterable[CatalogEntry],
    ) -> "RateTable":
        """从目录条目构建。停用的条目不参与计价。"""
        metals: Dict[str, float] = {}
        stones: Dict[str, float] = {}
        for entry in metal_types:
            if entry.is_active:
                metals[entry.name] = entry.price_modifier
                metals[str(entry.id)] = entry.price_modifier
        for entry in stone_types:
            if entry.is_active:
                stones[entry.name] = entry.price_modifier
                stones[str(entry.id)] = entry.price_modifier
        return cls(metals, stones)

    @staticmethod
    def _key(name: Union[str, int]) -> str:
        return str(name).strip().lower()

    def metal_rate(self, name: Union[str, int, None]) -> Optional[float]:
        if name is None:
            return None
        return self._metals.get(self._key(name))

    def stone_rate(self, name: Union[str, int, None]) -> Optional[float]:
        if name is None:
            return None
        return self._stones.get(self._key(name))

    def metal_names(self) -> List[str]:
        return list(self._metal_names)

    def stone_names(self) -> List[str]:
        return list(self._stone_names)

    def __bool__(self) -> bool:
        return bool(self._metals or self._stones)
