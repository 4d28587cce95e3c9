"""
商品编辑会话模块。
管理"分段编辑 → 保存 → 与服务器对账"的完整流程：

    IDLE ──open──> EDITING ──save──> SAVING ──ok──> RECONCILING ──done──> IDLE
      ^              │  ^               │
      └────cancel────┘  └────failed─────┘

保存期间屏蔽后台自动刷新，避免乐观更新后的本地数据被旧的服务器数据覆盖；
屏蔽在成功、失败、异常所有退出路径上都会解除。
"""
import copy
import json
import logging
from contextlib import contextmanager
from dataclasses import asdict
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from jewelry_store.api_client import ApiError, AuthenticationError
from jewelry_store.details import build_details, extract_product_spec
from jewelry_store.models import MaterialSpec, PriceBreakdown, Product
from jewelry_store.optimistic import optimistic_update
from jewelry_store.pricing.engine import PriceCalculationTracker
from jewelry_store.validation import BasicInfoForm, MaterialForm

logger = logging.getLogger(__name__)

SECTIONS = ("basic", "materials", "image")


class SessionState(Enum):
    IDLE = "idle"
    EDITING = "editing"
    SAVING = "saving"
    RECONCILING = "reconciling"


class SessionEvent(Enum):
    OPEN = "open"
    CANCEL = "cancel"
    SAVE = "save"
    SAVE_OK = "save_ok"
    SAVE_FAILED = "save_failed"
    RECONCILED = "reconciled"


TRANSITIONS = {
    (SessionState.IDLE, SessionEvent.OPEN): SessionState.EDITING,
    (SessionState.EDITING, SessionEvent.CANCEL): SessionState.IDLE,
    (SessionState.EDITING, SessionEvent.SAVE): SessionState.SAVING,
    (SessionState.SAVING, SessionEvent.SAVE_OK): SessionState.RECONCILING,
    (SessionState.SAVING, SessionEvent.SAVE_FAILED): SessionState.EDITING,
    (SessionState.RECONCILING, SessionEvent.RECONCILED): SessionState.IDLE,
}


class InvalidTransition(Exception):
    def __init__(self, state: SessionState, event: SessionEvent):
        super().__init__(f"状态 {state.value} 下不允许 {event.value}")
        self.state = state
        self.event = event


class EditSession:
    """
    单个商品的编辑会话。

    参数:
    - product: 当前展示的商品 (来自服务器)。
    - products: ProductService 或具有相同 get/update_basic/update_materials/upload_image 接口的对象。
    - pricer: 可选的计价函数 MaterialSpec -> PriceBreakdown；材料保存成功后用它重新计价。
    """

    def __init__(
        self,
        product: Product,
        products,
        pricer: Optional[Callable[[MaterialSpec], PriceBreakdown]] = None,
        tracker: Optional[PriceCalculationTracker] = None,
    ):
        self.product = product
        self.products = products
        self.pricer = pricer
        self.tracker = tracker or PriceCalculationTracker()
        self.state = SessionState.IDLE
        self.section: Optional[str] = None
        self.draft: Dict[str, Any] = {}
        self.last_error: Optional[str] = None
        self.breakdown: Optional[PriceBreakdown] = None
        self._refresh_suppressed = False

    # ==========================================
    # 状态机
    # ==========================================

    def transition(self, event: SessionEvent) -> SessionState:
        """唯一的状态迁移入口。非法迁移抛出 InvalidTransition。"""
        target = TRANSITIONS.get((self.state, event))
        if target is None:
            raise InvalidTransition(self.state, event)
        logger.debug("商品 %s 编辑会话: %s -> %s", self.product.id, self.state.value, target.value)
        self.state = target
        return target

    @property
    def refresh_suppressed(self) -> bool:
        return self._refresh_suppressed

    @contextmanager
    def _suppress_refresh(self):
        self._refresh_suppressed = True
        try:
            yield
        finally:
            self._refresh_suppressed = False

    # ==========================================
    # 编辑
    # ==========================================

    def open_section(self, section: str, draft: Optional[Dict[str, Any]] = None) -> None:
        if section not in SECTIONS:
            raise ValueError(f"未知的编辑分区: {section}")
        self.transition(SessionEvent.OPEN)
        self.section = section
        self.draft = self._initial_draft(section)
        if draft:
            self.draft.update(draft)
        self.last_error = None

    def _initial_draft(self, section: str) -> Dict[str, Any]:
        p = self.product
        if section == "basic":
            return {
                "name": p.name,
                "description": p.description,
                "base_price": p.base_price,
                "is_new": p.is_new,
                "is_bestseller": p.is_bestseller,
                "is_featured": p.is_featured,
                "product_type_id": p.product_type_id,
            }
        if section == "materials":
            return asdict(extract_product_spec(p))
        return {"filename": None, "content": None, "content_type": "image/jpeg"}

    def update_draft(self, **fields: Any) -> None:
        if self.state is not SessionState.EDITING:
            raise InvalidTransition(self.state, SessionEvent.OPEN)
        self.draft.update(fields)

    def cancel(self) -> None:
        self.transition(SessionEvent.CANCEL)
        self.section = None
        self.draft = {}
        self.last_error = None

    def display_values(self) -> Dict[str, Any]:
        """编辑中展示草稿，其余状态展示 (可能已乐观更新的) 商品数据。"""
        if self.state is SessionState.EDITING:
            return dict(self.draft)
        return asdict(extract_product_spec(self.product)) if self.section == "materials" else asdict(self.product)

    # ==========================================
    # 保存与对账
    # ==========================================

    def _prepare(self):
        """根据分区校验草稿，返回 (apply, commit)。校验失败抛出 ValidationError / ValueError。"""
        product = self.product

        if self.section == "basic":
            form = BasicInfoForm.model_validate(self.draft)

            def apply():
                for key, value in form.model_dump().items():
                    setattr(self.product, key, value)

            return apply, lambda: self.products.update_basic(product, form)

        if self.section == "materials":
            spec = MaterialForm.model_validate(self.draft).to_spec()
            snapshot = self._price_or_none(spec)

            def apply():
                self.product.details = json.loads(build_details(self.product.details, spec))

            return apply, lambda: self.products.update_materials(product, spec, snapshot)

        content = self.draft.get("content")
        if not content:
            raise ValueError("请先选择图片")
        filename = self.draft.get("filename") or "image.jpg"
        content_type = self.draft.get("content_type") or "image/jpeg"
        return (lambda: None), lambda: self.products.upload_image(product.id, filename, content, content_type)

    def _price_or_none(self, spec: MaterialSpec) -> Optional[PriceBreakdown]:
        if self.pricer is None:
            return None
        try:
            return self.pricer(spec)
        except ApiError as e:
            logger.warning("价格快照计算失败: %s", e)
            return None

    def save(self) -> bool:
        """
        保存当前分区。
        成功返回 True，会话回到 IDLE；失败返回 False，会话回到 EDITING 且草稿保留，错误信息见 last_error。
        鉴权失败在回到 EDITING 后继续抛出 AuthenticationError，由界面跳转登录。
        非 EDITING 状态下调用抛出 InvalidTransition。
        """
        if self.state is not SessionState.EDITING:
            raise InvalidTransition(self.state, SessionEvent.SAVE)
        try:
            apply, commit = self._prepare()
        except (ValidationError, ValueError) as e:
            self.last_error = str(e)
            return False

        self.transition(SessionEvent.SAVE)
        self.last_error = None
        previous = copy.deepcopy(self.product)

        def rollback():
            self.product = previous

        with self._suppress_refresh():
            try:
                saved = optimistic_update(apply, rollback, commit)
            except ApiError as e:
                self.last_error = e.message or str(e)
                self.transition(SessionEvent.SAVE_FAILED)
                logger.warning("商品 %s 保存失败: %s", self.product.id, e)
                if isinstance(e, AuthenticationError):
                    raise
                return False
            except Exception as e:
                self.last_error = str(e)
                self.transition(SessionEvent.SAVE_FAILED)
                raise

            self.transition(SessionEvent.SAVE_OK)
            self.product = saved
            if self.section == "materials":
                self.recalculate()

        self.section = None
        self.draft = {}
        self.transition(SessionEvent.RECONCILED)
        self._confirm()
        return True

    def _confirm(self) -> None:
        """保存后重新读取一次服务器数据确认。读取失败时保留保存接口返回的结果。"""
        try:
            fresh = self.products.get(self.product.id, refresh=True)
        except ApiError as e:
            logger.warning("商品 %s 保存后确认读取失败: %s", self.product.id, e)
            return
        self.on_server_data(fresh)

    def recalculate(self) -> Optional[PriceBreakdown]:
        """按当前商品的材料规格重新计价 (经过调度器，过期结果不会覆盖新结果)。"""
        if self.pricer is None:
            return None
        try:
            self.breakdown = self.tracker.run(extract_product_spec(self.product), self.pricer)
        except ApiError as e:
            logger.warning("商品 %s 重新计价失败: %s", self.product.id, e)
        return self.breakdown

    def on_server_data(self, product: Product) -> bool:
        """
        后台刷新回调。
        保存/对账期间忽略 (返回 False)；其余情况更新展示数据，编辑中的草稿不受影响。
        """
        if product.id != self.product.id:
            return False
        if self._refresh_suppressed:
            logger.debug("商品 %s 保存中，忽略后台刷新", product.id)
            return False
        self.product = product
        return True
