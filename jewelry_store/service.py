"""
业务服务层，遵循单一职责原则拆分为独立服务。
所有服务通过 ApiClient 访问后端；每次变更操作后失效对应列表缓存，过滤全部在本地完成。
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Union

from jewelry_store.api_client import ApiClient, ApiError
from jewelry_store.config import Settings
from jewelry_store.details import build_details
from jewelry_store.models import (
    CatalogEntry,
    ContactMessage,
    MaterialSpec,
    MetalType,
    PriceBreakdown,
    Product,
    ProductType,
    StoneType,
    is_unused_stone,
)
from jewelry_store.optimistic import optimistic_update
from jewelry_store.pricing.calculator import calculate_price
from jewelry_store.pricing.rates import RateTable
from jewelry_store.validation import BasicInfoForm, CatalogTypeForm, ProductTypeForm

logger = logging.getLogger(__name__)

PRODUCTS_PATH = "/api/products"
ADMIN_PRODUCTS_PATH = "/api/admin/products"
DIRECT_PRODUCT_PATH = "/api/direct-product"
PRODUCT_TYPES_PATH = "/api/product-types"
CONTACT_PATH = "/api/admin/contact"
METAL_TYPES_PATH = "/api/metal-types"
STONE_TYPES_PATH = "/api/stone-types"
EXCHANGE_RATE_PATH = "/api/exchange-rate"
CALCULATE_PRICE_PATH = "/api/calculate-price"

# 目录种类，对应 /api/<kind> 与 /api/admin/<kind>
METAL_KIND = "metal-types"
STONE_KIND = "stone-types"

MESSAGE_TABS = ("all", "unread", "read")
PRODUCT_FLAGS = ("all", "new", "bestseller", "featured")
STATUS_TABS = ("all", "active", "inactive")


class ConfirmationRequired(Exception):
    """删除操作未经确认。"""


def _require_confirmation(confirmed: bool, what: str) -> None:
    if not confirmed:
        raise ConfirmationRequired(f"删除{what}前需要确认")


class CatalogService:
    """
    目录服务：负责金属/宝石目录的读取与维护、汇率，以及基于目录的本地计价。
    目录条目变更后同时失效管理端与公开端的列表缓存。
    """
    def __init__(self, client: ApiClient, settings: Settings):
        self.client = client
        self.settings = settings

    def metal_types(self, admin: bool = False) -> List[MetalType]:
        """admin=True 时读取管理端列表 (含停用条目)。"""
        path = f"/api/admin/{METAL_KIND}" if admin else METAL_TYPES_PATH
        return [MetalType.from_api(d) for d in self.client.get_json(path) or []]

    def stone_types(self, admin: bool = False) -> List[StoneType]:
        path = f"/api/admin/{STONE_KIND}" if admin else STONE_TYPES_PATH
        return [StoneType.from_api(d) for d in self.client.get_json(path) or []]

    def rate_table(self) -> RateTable:
        """金属与宝石目录互不依赖，并发读取。"""
        with ThreadPoolExecutor(max_workers=2) as pool:
            metals = pool.submit(self.metal_types)
            stones = pool.submit(self.stone_types)
            return RateTable.from_catalog(metals.result(), stones.result())

    # ==========================================
    # 目录维护
    # ==========================================

    def _save_entry(self, kind: str, entry_id: Optional[int], form: Union[CatalogTypeForm, Dict[str, Any]]) -> Dict[str, Any]:
        if not isinstance(form, CatalogTypeForm):
            form = CatalogTypeForm.model_validate(form)
        method, path = ("POST", f"/api/admin/{kind}") if entry_id is None else ("PUT", f"/api/admin/{kind}/{entry_id}")
        try:
            return self.client.send_json(method, path, form.to_api())
        finally:
            self.client.invalidate(f"/api/admin/{kind}", f"/api/{kind}")

    def _delete_entry(self, kind: str, entry_id: int, confirmed: bool, what: str) -> None:
        _require_confirmation(confirmed, what)
        try:
            self.client.send_json("DELETE", f"/api/admin/{kind}/{entry_id}")
        finally:
            self.client.invalidate(f"/api/admin/{kind}", f"/api/{kind}")

    def create_metal_type(self, form) -> MetalType:
        return MetalType.from_api(self._save_entry(METAL_KIND, None, form))

    def update_metal_type(self, metal_id: int, form) -> MetalType:
        return MetalType.from_api(self._save_entry(METAL_KIND, metal_id, form))

    def delete_metal_type(self, metal_id: int, confirmed: bool = False) -> None:
        self._delete_entry(METAL_KIND, metal_id, confirmed, "金属类型")

    def create_stone_type(self, form) -> StoneType:
        return StoneType.from_api(self._save_entry(STONE_KIND, None, form))

    def update_stone_type(self, stone_id: int, form) -> StoneType:
        return StoneType.from_api(self._save_entry(STONE_KIND, stone_id, form))

    def delete_stone_type(self, stone_id: int, confirmed: bool = False) -> None:
        self._delete_entry(STONE_KIND, stone_id, confirmed, "宝石类型")

    @staticmethod
    def filter(entries: List[CatalogEntry], search: str = "", tab: str = "all") -> List[CatalogEntry]:
        """目录条目本地过滤，规则同 ProductTypeService.filter。"""
        return _filter_by_status(entries, search, tab)

    # ==========================================
    # 汇率与计价
    # ==========================================

    def exchange_rate(self) -> float:
        """读取 USD→INR 汇率，接口不可用时回退为配置值。"""
        try:
            data = self.client.get_json(EXCHANGE_RATE_PATH)
            rate = float((data or {}).get("rate") or 0)
        except (ApiError, ValueError, TypeError, AttributeError) as e:
            logger.warning("汇率获取失败，使用默认值 %s: %s", self.settings.usd_to_inr, e)
            return self.settings.usd_to_inr
        return rate if rate > 0 else self.settings.usd_to_inr

    def quote(self, spec: MaterialSpec, rates: Optional[RateTable] = None) -> PriceBreakdown:
        """本地计价 (权威价格来源)。"""
        return calculate_price(
            spec,
            rates if rates is not None else self.rate_table(),
            overhead_pct=self.settings.overhead_pct,
            exchange_rate=self.exchange_rate(),
        )

    def quote_remote(self, spec: MaterialSpec) -> Dict[str, Any]:
        """
        调用后端 /api/calculate-price，返回 {success, usd, inr} 原始结构。
        spec 中的类型名按目录换成 id 提交；目录中找不到的名称原样提交。
        """
        metal_ids = _ids_by_name(self.metal_types())
        stone_ids = _ids_by_name(self.stone_types())
        secondary = _stone_payload(spec.secondary_stone, spec.secondary_stone_weight, stone_ids)
        payload = {
            "metalTypeId": metal_ids.get(spec.metal_type.strip().lower(), spec.metal_type),
            "metalWeight": spec.metal_weight,
            "primaryStone": _stone_payload(spec.primary_stone, spec.primary_stone_weight, stone_ids),
            "secondaryStones": [secondary] if secondary else None,
            "otherStone": _stone_payload(spec.other_stone, spec.other_stone_weight, stone_ids),
        }
        return self.client.send_json("POST", CALCULATE_PRICE_PATH, payload)


def _ids_by_name(entries: List[CatalogEntry]) -> Dict[str, int]:
    return {e.name.strip().lower(): e.id for e in entries}


def _stone_payload(stone_type: str, weight: float, stone_ids: Dict[str, int]) -> Optional[Dict[str, Any]]:
    if is_unused_stone(stone_type):
        return None
    return {"stoneTypeId": stone_ids.get(stone_type.strip().lower(), stone_type), "caratWeight": weight}


def _filter_by_status(entries, search: str, tab: str):
    """名称/描述不区分大小写的子串匹配 + 启用状态分组 (all/active/inactive)。"""
    if tab not in STATUS_TABS:
        raise ValueError(f"未知的标签页: {tab}")
    term = (search or "").strip().lower()
    result = []
    for e in entries:
        if tab == "active" and not e.is_active:
            continue
        if tab == "inactive" and e.is_active:
            continue
        if term and term not in e.name.lower() and term not in (e.description or "").lower():
            continue
        result.append(e)
    return result


class ProductService:
    """
    商品服务：列表、精选、详情 (多端点回退)、分段更新、图片上传与删除。
    """
    def __init__(self, client: ApiClient, settings: Settings):
        self.client = client
        self.settings = settings

    def list(self, refresh: bool = False) -> List[Product]:
        return [Product.from_api(d) for d in self.client.get_json(PRODUCTS_PATH, use_cache=not refresh) or []]

    def featured(self) -> List[Product]:
        return [Product.from_api(d) for d in self.client.get_json(f"{PRODUCTS_PATH}/featured") or []]

    def get(self, product_id: int, refresh: bool = False) -> Product:
        """
        读取单个商品。
        依次尝试 普通接口 → 管理接口 → 免鉴权直连接口，每个接口带退避重试。
        """
        primary = f"{PRODUCTS_PATH}/{product_id}"
        if not refresh and primary in self.client.cache:
            return Product.from_api(self.client.cache.get(primary))
        data = self.client.fetch_with_fallback(
            [primary, f"{ADMIN_PRODUCTS_PATH}/{product_id}", f"{DIRECT_PRODUCT_PATH}/{product_id}"],
            attempts=self.settings.fetch_retries,
            backoff=self.settings.fetch_backoff,
        )
        self.client.cache.set(primary, data)
        return Product.from_api(data)

    @staticmethod
    def search(products: List[Product], term: str = "", flag: str = "all") -> List[Product]:
        """本地过滤：名称/描述子串匹配 + 推荐标记分组。"""
        if flag not in PRODUCT_FLAGS:
            raise ValueError(f"未知的商品标记: {flag}")
        term = (term or "").strip().lower()
        result = []
        for p in products:
            if flag == "new" and not p.is_new:
                continue
            if flag == "bestseller" and not p.is_bestseller:
                continue
            if flag == "featured" and not p.is_featured:
                continue
            if term and term not in p.name.lower() and term not in (p.description or "").lower():
                continue
            result.append(p)
        return result

    def _invalidate(self, product_id: int) -> None:
        self.client.invalidate(PRODUCTS_PATH, ADMIN_PRODUCTS_PATH, f"{DIRECT_PRODUCT_PATH}/{product_id}")

    def update(self, product_id: int, fields: Dict[str, Any]) -> Product:
        """PATCH 部分字段，返回服务器的权威结果。"""
        try:
            data = self.client.send_json("PATCH", f"{PRODUCTS_PATH}/{product_id}", fields)
        finally:
            self._invalidate(product_id)
        return Product.from_api(data)

    def update_basic(self, product: Product, form: Union[BasicInfoForm, Dict[str, Any]]) -> Product:
        if not isinstance(form, BasicInfoForm):
            form = BasicInfoForm.model_validate(form)
        return self.update(product.id, form.to_api())

    def update_materials(
        self,
        product: Product,
        spec: MaterialSpec,
        breakdown: Optional[PriceBreakdown] = None,
    ) -> Product:
        """材料变更：合并后整体重写 details，并同步价格快照。"""
        fields: Dict[str, Any] = {"details": build_details(product.details, spec, breakdown)}
        if breakdown is not None:
            fields["calculatedPriceINR"] = breakdown.total
            fields["calculatedPriceUSD"] = breakdown.total_usd
        return self.update(product.id, fields)

    def upload_image(self, product_id: int, filename: str, content: bytes, content_type: str = "image/jpeg") -> Product:
        """以 multipart 上传主图，字段名 mainImage。"""
        try:
            data = self.client.upload(
                "PATCH",
                f"{PRODUCTS_PATH}/{product_id}/image",
                files={"mainImage": (filename, content, content_type)},
            )
        finally:
            self._invalidate(product_id)
        return Product.from_api(data)

    def delete(self, product_id: int, confirmed: bool = False) -> None:
        _require_confirmation(confirmed, "商品")
        try:
            self.client.send_json("DELETE", f"{PRODUCTS_PATH}/{product_id}")
        finally:
            self._invalidate(product_id)


class ProductTypeService:
    """商品类型增删改查。"""
    def __init__(self, client: ApiClient):
        self.client = client

    def list(self, refresh: bool = False) -> List[ProductType]:
        items = [ProductType.from_api(d) for d in self.client.get_json(PRODUCT_TYPES_PATH, use_cache=not refresh) or []]
        return sorted(items, key=lambda t: (t.display_order, t.name.lower()))

    @staticmethod
    def filter(types: List[ProductType], search: str = "", tab: str = "all") -> List[ProductType]:
        """本地过滤：名称或描述中不区分大小写的子串匹配，再按启用状态分组 (all/active/inactive)。"""
        return _filter_by_status(types, search, tab)

    def create(self, form: Union[ProductTypeForm, Dict[str, Any]]) -> ProductType:
        if not isinstance(form, ProductTypeForm):
            form = ProductTypeForm.model_validate(form)
        try:
            data = self.client.send_json("POST", PRODUCT_TYPES_PATH, form.to_api())
        finally:
            self.client.invalidate(PRODUCT_TYPES_PATH)
        return ProductType.from_api(data)

    def update(self, type_id: int, form: Union[ProductTypeForm, Dict[str, Any]]) -> ProductType:
        if not isinstance(form, ProductTypeForm):
            form = ProductTypeForm.model_validate(form)
        try:
            data = self.client.send_json("PUT", f"{PRODUCT_TYPES_PATH}/{type_id}", form.to_api())
        finally:
            self.client.invalidate(PRODUCT_TYPES_PATH)
        return ProductType.from_api(data)

    def delete(self, type_id: int, confirmed: bool = False) -> None:
        _require_confirmation(confirmed, "商品类型")
        try:
            self.client.send_json("DELETE", f"{PRODUCT_TYPES_PATH}/{type_id}")
        finally:
            self.client.invalidate(PRODUCT_TYPES_PATH)


class ContactMessageService:
    """联系留言：列表、标记已读、删除。"""
    def __init__(self, client: ApiClient):
        self.client = client

    def list(self, refresh: bool = False) -> List[ContactMessage]:
        return [ContactMessage.from_api(d) for d in self.client.get_json(CONTACT_PATH, use_cache=not refresh) or []]

    @staticmethod
    def filter(messages: List[ContactMessage], search: str = "", tab: str = "all") -> List[ContactMessage]:
        """
        本地过滤：先按标签页分组 (all/unread/read)，再在 姓名/邮箱/留言/电话 中做不区分大小写的子串匹配，
        结果按创建时间倒序。
        """
        if tab not in MESSAGE_TABS:
            raise ValueError(f"未知的标签页: {tab}")
        term = (search or "").strip().lower()
        result = []
        for m in messages:
            if tab == "unread" and m.is_read:
                continue
            if tab == "read" and not m.is_read:
                continue
            if term:
                haystack = [m.name, m.email, m.message, m.phone or ""]
                if not any(term in h.lower() for h in haystack):
                    continue
            result.append(m)
        return sorted(result, key=lambda m: m.created_at.timestamp() if m.created_at else 0.0, reverse=True)

    def mark_read(self, message_id: int) -> None:
        """乐观地把缓存列表中的留言标记为已读；请求失败时回滚缓存。"""
        snapshot: Dict[str, Any] = {}

        def apply():
            snapshot["before"] = self.client.cache.patch(
                CONTACT_PATH,
                lambda rows: [dict(r, isRead=True) if r.get("id") == message_id else r for r in rows or []],
            )

        def rollback():
            if snapshot.get("before") is not None:
                self.client.cache.set(CONTACT_PATH, snapshot["before"])

        def commit():
            return self.client.send_json("PUT", f"{CONTACT_PATH}/{message_id}", {"isRead": True})

        optimistic_update(apply, rollback, commit)
        self.client.invalidate(CONTACT_PATH)

    def delete(self, message_id: int, confirmed: bool = False) -> None:
        _require_confirmation(confirmed, "留言")
        try:
            self.client.send_json("DELETE", f"{CONTACT_PATH}/{message_id}")
        finally:
            self.client.invalidate(CONTACT_PATH)
