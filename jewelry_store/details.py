"""
商品 details 字段解析模块。
负责从结构松散、可能多层嵌套的 details JSON (含 additionalData / aiInputs 子对象) 中
按固定优先级提取材料规格，并在保存时把新字段合并后整体重写 details。
"""
import json
import logging
import math
from typing import Any, Dict, List, Optional, Tuple, Union

from jewelry_store.models import MaterialSpec, NONE_SENTINEL, is_unused_stone

logger = logging.getLogger(__name__)

# 字段映射字典 (MaterialSpec 字段 -> 历史数据中出现过的键名)
FIELD_KEYS = {
    "metal_type": ["metalType"],
    "metal_weight": ["metalWeight"],
    "primary_stone": ["mainStoneType", "primaryStone", "primaryStoneType"],
    "primary_stone_weight": ["mainStoneWeight", "primaryStoneWeight"],
    "secondary_stone": ["secondaryStoneType", "secondaryStone", "secondaryStoneTypes"],
    "secondary_stone_weight": ["secondaryStoneWeight"],
    "other_stone": ["otherStoneType", "otherStone", "otherStoneTypes"],
    "other_stone_weight": ["otherStoneWeight"],
}

TEXT_DEFAULTS = {
    "metal_type": "Unknown",
    "primary_stone": NONE_SENTINEL,
    "secondary_stone": NONE_SENTINEL,
    "other_stone": NONE_SENTINEL,
}

# 数据来源优先级，从高到低:
#   1. details 根级
#   2. 商品级 aiInputs (单独传入)
#   3. details.aiInputs
#   4. details.additionalData
#   5. details.additionalData.aiInputs
SOURCE_ORDER = (
    "details",
    "ai_inputs",
    "details.aiInputs",
    "details.additionalData",
    "details.additionalData.aiInputs",
)

CACHED_PRICE_KEYS = ("calculatedPriceINR", "calculatedPriceUSD")


def parse_details(raw: Union[str, Dict[str, Any], None]) -> Dict[str, Any]:
    """
    解析 details 字段。
    支持 None、字典或 JSON 字符串；非法 JSON 或非对象 JSON 一律返回空字典，不向调用方抛出异常。
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        logger.warning("details 类型无法识别: %s", type(raw).__name__)
        return {}
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        logger.warning("details 不是合法 JSON，使用默认值: %s", e)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("details JSON 不是对象: %s", type(parsed).__name__)
        return {}
    return parsed


def _sources(details: Dict[str, Any], ai_inputs: Dict[str, Any]) -> List[Dict[str, Any]]:
    """按 SOURCE_ORDER 展开各数据来源。缺失或非字典的层级视为空。"""
    additional = _as_dict(details.get("additionalData"))
    by_name = {
        "details": details,
        "ai_inputs": ai_inputs,
        "details.aiInputs": _as_dict(details.get("aiInputs")),
        "details.additionalData": additional,
        "details.additionalData.aiInputs": _as_dict(additional.get("aiInputs")),
    }
    return [by_name[name] for name in SOURCE_ORDER]


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        # 嵌套层偶尔也被序列化成字符串
        return parse_details(value)
    return {}


def _coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("name")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_number(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (ValueError, TypeError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _is_placeholder(field_name: str, value: Any) -> bool:
    """0 克重与"未使用"哨兵值：出现在别名键上时视为缺失。"""
    if field_name.endswith("_weight"):
        return value == 0
    if field_name == "metal_type":
        return value.lower() == "none_selected"
    return is_unused_stone(value)


def _resolve(sources: List[Dict[str, Any]], field_name: str) -> Any:
    keys = FIELD_KEYS[field_name]
    numeric = field_name.endswith("_weight")
    for source in sources:
        for key in keys:
            if key not in source:
                continue
            value = _coerce_number(source[key]) if numeric else _coerce_text(source[key])
            if value is None:
                continue
            # 规范键由 build_details 写入，其中的哨兵值与 0 是用户的显式选择，直接采用
            if key == keys[0] or not _is_placeholder(field_name, value):
                return value
    return 0.0 if numeric else TEXT_DEFAULTS[field_name]


def extract_material_spec(
    details: Union[str, Dict[str, Any], None],
    ai_inputs: Union[str, Dict[str, Any], None] = None,
) -> MaterialSpec:
    """
    从 details 与 aiInputs 中提取扁平的材料规格。

    每个字段依次检查 SOURCE_ORDER 中的来源，取第一个可用值：
    - 缺失的键、空串、NaN、非数字视为缺失，继续查找下一来源；
    - 规范键 (如 mainStoneType、metalWeight) 上的"未使用"哨兵值与 0 是显式值，到此为止；
    - 旧别名键 (如 primaryStone) 上的哨兵值与 0 仍视为缺失；
    - 全部缺失时使用默认值 ("Unknown" / "None" / 0)。
    任何解析错误都不会抛出，最差情况返回全默认值的规格。
    """
    sources = _sources(parse_details(details), parse_details(ai_inputs))
    return MaterialSpec(**{name: _resolve(sources, name) for name in FIELD_KEYS})


def extract_product_spec(product) -> MaterialSpec:
    """对 Product 对象的便捷封装。"""
    return extract_material_spec(product.details, product.ai_inputs)


def cached_prices(details: Union[str, Dict[str, Any], None]) -> Tuple[Optional[float], Optional[float]]:
    """读取 details 中缓存的价格快照 (INR, USD)。"""
    parsed = parse_details(details)
    additional = _as_dict(parsed.get("additionalData"))
    values = []
    for key in CACHED_PRICE_KEYS:
        raw = parsed.get(key, additional.get(key))
        values.append(_coerce_number(raw) or None)
    return values[0], values[1]


def build_details(
    existing: Union[str, Dict[str, Any], None],
    spec: Optional[MaterialSpec] = None,
    breakdown=None,
    **fields: Any,
) -> str:
    """
    合并新字段后整体重写 details，返回 JSON 字符串 (PATCH 时整体提交)。

    参数:
    - existing: 原 details (字符串/字典/None)，无关键值原样保留。
    - spec: 新的材料规格，写入根级并同步到 additionalData。
    - breakdown: 可选的 PriceBreakdown，写入价格快照。
    - fields: 其他需要写入根级的键，例如 detailedDescription、tagline。
    """
    merged = dict(parse_details(existing))
    additional = dict(_as_dict(merged.get("additionalData")))

    if spec is not None:
        spec_values = spec.to_dict()
        merged.update(spec_values)
        additional.update(spec_values)
        # 旧别名会在优先级上抢先，必须清掉
        for name, keys in FIELD_KEYS.items():
            for alias in keys[1:]:
                merged.pop(alias, None)
                additional.pop(alias, None)

    if breakdown is not None:
        snapshot = {"calculatedPriceINR": breakdown.total, "calculatedPriceUSD": breakdown.total_usd}
        merged.update(snapshot)
        additional.update(snapshot)

    merged.update(fields)
    if additional:
        merged["additionalData"] = additional
    return json.dumps(merged, ensure_ascii=False)
