"""
数据模型定义模块。
定义了项目中使用的核心数据结构：材料规格、价格明细、商品、商品类型、联系留言以及金属/宝石目录。
所有 from_api 构造函数都接受后端返回的 camelCase JSON。
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any, Iterator, Tuple, Union

# 宝石位未使用的哨兵值
NONE_SENTINEL = "None"
UNUSED_STONE_VALUES = {"none", "none_selected", ""}

STONE_SLOTS = ("primary", "secondary", "other")


def is_unused_stone(value: Optional[str]) -> bool:
    """判断宝石类型是否为"未使用"哨兵值。"""
    if value is None:
        return True
    return str(value).strip().lower() in UNUSED_STONE_VALUES


@dataclass
class MaterialSpec:
    """
    代表一件首饰的材料规格。
    金属类型 + 金属克重，以及最多三个宝石位 (主石/副石/其他)，每个宝石位为类型 + 克拉重量。
    """
    metal_type: str = "Unknown"
    metal_weight: float = 0.0          # 克
    primary_stone: str = NONE_SENTINEL
    primary_stone_weight: float = 0.0  # 克拉
    secondary_stone: str = NONE_SENTINEL
    secondary_stone_weight: float = 0.0
    other_stone: str = NONE_SENTINEL
    other_stone_weight: float = 0.0

    def stone_slots(self) -> Iterator[Tuple[str, str, float]]:
        """依次返回 (宝石位, 类型, 重量)。"""
        for slot in STONE_SLOTS:
            yield slot, getattr(self, f"{slot}_stone"), getattr(self, f"{slot}_stone_weight")

    def to_dict(self) -> Dict[str, Any]:
        """转换为 details 中使用的 camelCase 键。"""
        return {
            "metalType": self.metal_type,
            "metalWeight": self.metal_weight,
            "mainStoneType": self.primary_stone,
            "mainStoneWeight": self.primary_stone_weight,
            "secondaryStoneType": self.secondary_stone,
            "secondaryStoneWeight": self.secondary_stone_weight,
            "otherStoneType": self.other_stone,
            "otherStoneWeight": self.other_stone_weight,
        }


@dataclass
class PriceBreakdown:
    """
    价格明细 (派生数据，不作为权威存储)。
    所有金额默认以主币种 (INR) 计，total_usd 为换算后的参考币种总价。
    """
    metal_cost: float = 0.0
    primary_stone_cost: float = 0.0
    secondary_stone_cost: float = 0.0
    other_stone_cost: float = 0.0
    subtotal: float = 0.0
    overhead: float = 0.0
    total: float = 0.0
    total_usd: float = 0.0
    currency: str = "INR"

    # 目录中找不到费率的类型名，对应行成本按 0 计
    missing_rates: List[str] = field(default_factory=list)

    @property
    def stone_costs(self) -> Tuple[float, float, float]:
        return (self.primary_stone_cost, self.secondary_stone_cost, self.other_stone_cost)

    @property
    def is_partial(self) -> bool:
        return bool(self.missing_rates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metalCost": self.metal_cost,
            "primaryStoneCost": self.primary_stone_cost,
            "secondaryStoneCost": self.secondary_stone_cost,
            "otherStoneCost": self.other_stone_cost,
            "subtotal": self.subtotal,
            "overhead": self.overhead,
            "total": self.total,
            "totalUSD": self.total_usd,
            "currency": self.currency,
            "missingRates": list(self.missing_rates),
        }


@dataclass
class Product:
    """
    代表一个商品。
    details 为解析后的字典；若后端存储的是非法 JSON，则保留原始字符串，由提取器兜底。
    """
    id: int
    name: str = ""
    description: str = ""
    details: Union[Dict[str, Any], str, None] = None
    base_price: float = 0.0                       # 主币种 (INR) 基础价格
    calculated_price_inr: Optional[float] = None  # 缓存的价格快照
    calculated_price_usd: Optional[float] = None
    image_url: Optional[str] = None
    additional_images: List[str] = field(default_factory=list)
    is_new: bool = False
    is_bestseller: bool = False
    is_featured: bool = False
    product_type_id: Optional[int] = None
    ai_inputs: Optional[Dict[str, Any]] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Product":
        # 延迟导入，避免 details 模块与 models 循环依赖
        from jewelry_store.details import parse_details

        raw_details = data.get("details")
        parsed = parse_details(raw_details)
        if not parsed and isinstance(raw_details, str) and raw_details.strip():
            details: Union[Dict[str, Any], str, None] = raw_details
        else:
            details = parsed

        ai_inputs = data.get("aiInputs")
        if isinstance(ai_inputs, str):
            ai_inputs = parse_details(ai_inputs)

        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            description=data.get("description") or "",
            details=details,
            base_price=_to_float(data.get("basePrice")) or 0.0,
            calculated_price_inr=_to_float(data.get("calculatedPriceINR")),
            calculated_price_usd=_to_float(data.get("calculatedPriceUSD")),
            image_url=data.get("imageUrl"),
            additional_images=list(data.get("additionalImages") or []),
            is_new=bool(data.get("isNew")),
            is_bestseller=bool(data.get("isBestseller")),
            is_featured=bool(data.get("isFeatured")),
            product_type_id=data.get("productTypeId"),
            ai_inputs=ai_inputs or None,
        )


@dataclass
class ProductType:
    id: int
    name: str
    description: str = ""
    display_order: int = 100
    is_active: bool = True
    icon: str = ""
    color: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ProductType":
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            description=data.get("description") or "",
            display_order=int(data.get("displayOrder") or 0),
            is_active=bool(data.get("isActive", True)),
            icon=data.get("icon") or "",
            color=data.get("color") or "",
        )


@dataclass
class ContactMessage:
    """联系表单留言。仅由管理员标记已读或删除。"""
    id: int
    name: str
    email: str
    message: str
    phone: Optional[str] = None
    is_read: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ContactMessage":
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            email=data.get("email") or "",
            message=data.get("message") or "",
            phone=data.get("phone"),
            is_read=bool(data.get("isRead")),
            created_at=_parse_datetime(data.get("createdAt")),
        )


@dataclass
class CatalogEntry:
    """
    金属/宝石目录条目。
    price_modifier 对金属为每克单价，对宝石为每克拉单价 (INR)。
    """
    id: int
    name: str
    price_modifier: float = 0.0
    description: str = ""
    display_order: int = 0
    is_active: bool = True
    color: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]):
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            price_modifier=_to_float(data.get("priceModifier")) or 0.0,
            description=data.get("description") or "",
            display_order=int(data.get("displayOrder") or 0),
            is_active=bool(data.get("isActive", True)),
            color=data.get("color") or "",
        )


class MetalType(CatalogEntry):
    pass


class StoneType(CatalogEntry):
    pass


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
