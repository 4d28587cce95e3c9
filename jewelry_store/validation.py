"""
表单校验模块。
使用 pydantic 定义后台各编辑表单的字段约束，并负责转换为后端需要的 camelCase 载荷。
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from jewelry_store.models import MaterialSpec, NONE_SENTINEL


def _blank_to_empty(value: Any) -> Any:
    return "" if value is None else value


def _check_max(value: str, limit: int, label: str) -> str:
    if len(value) > limit:
        raise ValueError(f"{label}不能超过 {limit} 个字符")
    return value


class ProductTypeForm(BaseModel):
    """商品类型表单。名称 2-50 个字符，其余文本字段允许为空。"""
    name: str
    description: str = ""
    display_order: int = Field(100, ge=0)
    is_active: bool = True
    icon: str = ""
    color: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        if len(v) < 2:
            raise ValueError("名称至少需要 2 个字符")
        return _check_max(v, 50, "名称")

    @field_validator("description", "icon", "color", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return _blank_to_empty(v)

    @field_validator("description")
    @classmethod
    def _check_description(cls, v: str) -> str:
        return _check_max(v, 200, "描述")

    @field_validator("icon")
    @classmethod
    def _check_icon(cls, v: str) -> str:
        return _check_max(v, 30, "图标名")

    @field_validator("color")
    @classmethod
    def _check_color(cls, v: str) -> str:
        return _check_max(v, 20, "颜色代码")

    def to_api(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "displayOrder": self.display_order,
            "isActive": self.is_active,
            "icon": self.icon,
            "color": self.color,
        }


class BasicInfoForm(BaseModel):
    """商品基础信息表单。"""
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    base_price: float = Field(0.0, ge=0)
    is_new: bool = False
    is_bestseller: bool = False
    is_featured: bool = False
    product_type_id: Optional[int] = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("description", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return _blank_to_empty(v)

    def to_api(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "basePrice": self.base_price,
            "isNew": self.is_new,
            "isBestseller": self.is_bestseller,
            "isFeatured": self.is_featured,
            "productTypeId": self.product_type_id,
        }


class MaterialForm(BaseModel):
    """材料表单。重量不能为负；宝石类型留空视为未使用。"""
    metal_type: str = Field(..., min_length=1)
    metal_weight: float = Field(0.0, ge=0)
    primary_stone: str = NONE_SENTINEL
    primary_stone_weight: float = Field(0.0, ge=0)
    secondary_stone: str = NONE_SENTINEL
    secondary_stone_weight: float = Field(0.0, ge=0)
    other_stone: str = NONE_SENTINEL
    other_stone_weight: float = Field(0.0, ge=0)

    @field_validator("primary_stone", "secondary_stone", "other_stone", mode="before")
    @classmethod
    def _blank_stone(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return NONE_SENTINEL
        return v

    def to_spec(self) -> MaterialSpec:
        return MaterialSpec(**self.model_dump())


class CatalogTypeForm(BaseModel):
    """
    金属/宝石目录条目表单。
    price_modifier 对金属为每克单价，对宝石为每克拉单价 (INR)，不能为负。
    """
    name: str
    price_modifier: float = Field(0.0, ge=0)
    description: str = ""
    display_order: int = 0
    is_active: bool = True
    color: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        if len(v) < 2:
            raise ValueError("名称至少需要 2 个字符")
        return v

    @field_validator("description", "color", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return _blank_to_empty(v)

    @field_validator("description")
    @classmethod
    def _check_description(cls, v: str) -> str:
        return _check_max(v, 500, "描述")

    @field_validator("color")
    @classmethod
    def _check_color(cls, v: str) -> str:
        return _check_max(v, 20, "颜色代码")

    def to_api(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "priceModifier": self.price_modifier,
            "description": self.description,
            "displayOrder": self.display_order,
            "isActive": self.is_active,
            "color": self.color,
        }
