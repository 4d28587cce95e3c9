"""
Streamlit Web 应用程序入口。
首饰商城管理后台：商品、精选商品、商品类型、金属/宝石目录、联系留言以及计价工具。
负责 UI 渲染和用户交互，调用底层服务进行业务处理。
"""
from typing import Any, Dict

import pandas as pd
import streamlit as st
from pydantic import ValidationError

from jewelry_store.api_client import ApiClient, ApiError, AuthenticationError
from jewelry_store.config import load_settings, setup_logging
from jewelry_store.details import extract_product_spec
from jewelry_store.exporter import generate_excel_bytes, quick_check
from jewelry_store.models import MaterialSpec, NONE_SENTINEL
from jewelry_store.pricing.calculator import calculate_price
from jewelry_store.pricing.engine import batch_calculate
from jewelry_store.pricing.rates import RateTable
from jewelry_store.service import (
    CatalogService,
    ContactMessageService,
    ProductService,
    ProductTypeService,
    STATUS_TABS,
)
from jewelry_store.session import EditSession, SessionState

SECTION_LABELS = {"basic": "基础信息", "materials": "材料", "image": "主图"}
STATUS_LABELS = {"all": "全部", "active": "启用", "inactive": "停用"}
CATALOG_KINDS = {"metal": ("金属", "每克单价 (₹)"), "stone": ("宝石", "每克拉单价 (₹)")}

# ==========================================
# UI 辅助函数
# ==========================================

def init_session_state():
    """初始化 Session State 变量。"""
    if "settings" not in st.session_state:
        st.session_state.settings = load_settings()
        setup_logging(st.session_state.settings.log_level)
    if "edit_sessions" not in st.session_state:
        st.session_state.edit_sessions = {}
    if "pending_delete" not in st.session_state:
        st.session_state.pending_delete = None


def get_client(base_url: str) -> ApiClient:
    """同一后端地址复用一个客户端 (及其查询缓存)。"""
    client = st.session_state.get("client")
    if client is None or client.base_url != base_url.rstrip("/"):
        client = ApiClient(base_url, timeout=st.session_state.settings.api_timeout)
        st.session_state.client = client
    return client


def render_sidebar() -> Dict[str, Any]:
    """渲染侧边栏并返回配置字典。"""
    settings = st.session_state.settings
    config: Dict[str, Any] = {}
    with st.sidebar:
        st.header("⚙️ 全局设置")
        config["api_base_url"] = st.text_input("后端地址", value=settings.api_base_url)
        config["page"] = st.radio(
            "页面",
            ("products", "featured", "types", "catalog", "messages", "calculator"),
            format_func=lambda x: {
                "products": "💍 商品管理",
                "featured": "⭐ 精选商品",
                "types": "🗂️ 商品类型",
                "catalog": "💎 金属/宝石目录",
                "messages": "✉️ 联系留言",
                "calculator": "🧮 计价工具",
            }[x],
        )

        st.markdown("---")
        st.header("🧮 定价参数")
        settings.overhead_pct = st.number_input(
            "管理费比例", value=settings.overhead_pct, step=0.01, format="%.2f", min_value=0.0, max_value=1.0
        )
        if st.button("🔄 清空缓存并刷新", type="secondary"):
            if st.session_state.get("client"):
                st.session_state.client.cache.clear()
            st.session_state.edit_sessions = {}
            st.toast("缓存已清空")
            st.rerun()
    return config


def _confirm_delete(key: str, label: str) -> bool:
    """
    两步删除：第一次点击只登记待删除项，再次点击"确认删除"才返回 True。
    """
    pending = st.session_state.pending_delete
    if pending != key:
        if st.button("🗑️ 删除", key=f"del_{key}"):
            st.session_state.pending_delete = key
            st.rerun()
        return False

    st.warning(f"确定要删除 {label} 吗？此操作无法撤销。")
    col_yes, col_no = st.columns(2)
    with col_yes:
        if st.button("确认删除", key=f"yes_{key}", type="primary"):
            st.session_state.pending_delete = None
            return True
    with col_no:
        if st.button("取消", key=f"no_{key}"):
            st.session_state.pending_delete = None
            st.rerun()
    return False


def _rates(catalog: CatalogService) -> RateTable:
    try:
        return catalog.rate_table()
    except ApiError as e:
        st.warning(f"金属/宝石目录读取失败，价格使用缓存快照: {e}")
        return RateTable()


def _render_breakdown(breakdown, exchange_rate: float):
    if breakdown is None:
        st.caption("暂无价格明细")
        return
    df = pd.DataFrame([
        {"项目": "金属", "金额 (₹)": breakdown.metal_cost},
        {"项目": "主石", "金额 (₹)": breakdown.primary_stone_cost},
        {"项目": "副石", "金额 (₹)": breakdown.secondary_stone_cost},
        {"项目": "其他宝石", "金额 (₹)": breakdown.other_stone_cost},
        {"项目": "材料小计", "金额 (₹)": breakdown.subtotal},
        {"项目": "管理费", "金额 (₹)": breakdown.overhead},
        {"项目": "总价", "金额 (₹)": breakdown.total},
    ])
    st.dataframe(df, hide_index=True, use_container_width=True)
    st.metric("总价", f"₹{breakdown.total:,.0f}", help=f"约 ${breakdown.total_usd:,.0f} (汇率 {exchange_rate})")
    if breakdown.missing_rates:
        st.caption(f"⚠️ 缺少费率，按 0 计: {', '.join(breakdown.missing_rates)}")


def _material_inputs(values: Dict[str, Any], rates: RateTable, key: str) -> Dict[str, Any]:
    """材料输入控件，返回新的字段值。"""
    metal_options = sorted(set(rates.metal_names()) | {str(values.get("metal_type", "Unknown"))})
    stone_options = [NONE_SENTINEL] + rates.stone_names()

    def stone_index(value):
        value = str(value or NONE_SENTINEL)
        if value not in stone_options:
            stone_options.append(value)
        return stone_options.index(value)

    out = {}
    out["metal_type"] = st.selectbox(
        "金属", metal_options, index=metal_options.index(str(values.get("metal_type", "Unknown"))), key=f"{key}_metal"
    )
    out["metal_weight"] = st.number_input(
        "金属克重 (g)", value=float(values.get("metal_weight") or 0.0), min_value=0.0, step=0.1, key=f"{key}_mw"
    )
    for slot, label in (("primary", "主石"), ("secondary", "副石"), ("other", "其他宝石")):
        col_t, col_w = st.columns(2)
        with col_t:
            current = values.get(f"{slot}_stone")
            out[f"{slot}_stone"] = st.selectbox(
                label, stone_options, index=stone_index(current), key=f"{key}_{slot}"
            )
        with col_w:
            out[f"{slot}_stone_weight"] = st.number_input(
                f"{label}克拉", value=float(values.get(f"{slot}_stone_weight") or 0.0),
                min_value=0.0, step=0.05, key=f"{key}_{slot}_w"
            )
    return out


# ==========================================
# 页面
# ==========================================

def render_products(client: ApiClient, config: Dict[str, Any]):
    settings = st.session_state.settings
    products = ProductService(client, settings)
    catalog = CatalogService(client, settings)

    st.subheader("💍 商品管理")
    col_search, col_flag = st.columns([3, 1])
    with col_search:
        term = st.text_input("搜索商品", placeholder="名称或描述")
    with col_flag:
        flag = st.selectbox(
            "筛选", ("all", "new", "bestseller", "featured"),
            format_func=lambda x: {"all": "全部", "new": "新品", "bestseller": "热销", "featured": "精选"}[x],
        )

    items = products.list()
    rates = _rates(catalog)
    exchange_rate = catalog.exchange_rate()
    rows = batch_calculate(items, rates, overhead_pct=settings.overhead_pct, exchange_rate=exchange_rate)

    # 顶部：导出与统计
    excel_bytes, file_name = generate_excel_bytes(rows)
    col_dl, col_info = st.columns([1, 3])
    with col_dl:
        st.download_button(
            label="📥 下载价格表",
            data=excel_bytes,
            file_name=file_name,
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            use_container_width=True,
        )
    with col_info:
        report = quick_check(rows)
        st.caption(f"📊 统计: 商品 {report['商品总数']} | 总价为0 {report['总价为0']} | 费率缺失 {report['费率缺失']}")

    filtered = products.search(items, term, flag)
    if not filtered:
        st.info("没有符合条件的商品。")
        return

    df = pd.DataFrame([r for r in rows if r["id"] in {p.id for p in filtered}])
    show_cols = [c for c in ["id", "name", "metalType", "metalWeight", "total", "totalUSD", "price_source", "error"] if c in df.columns]
    st.dataframe(
        df[show_cols],
        column_config={
            "id": "ID",
            "name": "名称",
            "metalType": "金属",
            "metalWeight": st.column_config.NumberColumn("克重", format="%.2f"),
            "total": st.column_config.NumberColumn("总价 (₹)", format="%.0f"),
            "totalUSD": st.column_config.NumberColumn("总价 ($)", format="%.0f"),
            "price_source": "价格来源",
            "error": "错误信息",
        },
        hide_index=True,
        use_container_width=True,
    )

    selected_id = st.selectbox(
        "选择要编辑的商品", [p.id for p in filtered],
        format_func=lambda pid: next(f"[{p.id}] {p.name}" for p in filtered if p.id == pid),
    )
    render_product_editor(products, catalog, selected_id, rates, exchange_rate)


def _get_edit_session(products: ProductService, catalog: CatalogService, product_id: int, rates: RateTable, exchange_rate: float) -> EditSession:
    sessions = st.session_state.edit_sessions
    session = sessions.get(product_id)
    settings = st.session_state.settings

    def pricer(spec: MaterialSpec):
        return calculate_price(spec, rates, overhead_pct=settings.overhead_pct, exchange_rate=exchange_rate)

    if session is None:
        session = EditSession(products.get(product_id), products, pricer=pricer if rates else None)
        session.recalculate()
        sessions[product_id] = session
    else:
        session.pricer = pricer if rates else None
        # 后台刷新：保存期间会被会话忽略
        try:
            session.on_server_data(products.get(product_id))
        except ApiError as e:
            st.caption(f"商品刷新失败: {e}")
    return session


def render_product_editor(products: ProductService, catalog: CatalogService, product_id: int, rates: RateTable, exchange_rate: float):
    try:
        session = _get_edit_session(products, catalog, product_id, rates, exchange_rate)
    except ApiError as e:
        st.error(f"商品读取失败: {e}")
        return
    product = session.product

    st.markdown("---")
    st.markdown(f"### {product.name}")
    col_info, col_price = st.columns([2, 1])
    with col_info:
        if product.image_url:
            st.image(product.image_url, width=240)
        st.write(product.description)
        spec = extract_product_spec(product)
        st.caption(
            f"金属: {spec.metal_type} {spec.metal_weight}g | 主石: {spec.primary_stone} {spec.primary_stone_weight}ct | "
            f"副石: {spec.secondary_stone} {spec.secondary_stone_weight}ct | 其他: {spec.other_stone} {spec.other_stone_weight}ct"
        )
        flags = [label for on, label in ((product.is_new, "新品"), (product.is_bestseller, "热销"), (product.is_featured, "精选")) if on]
        st.caption("标记: " + (" / ".join(flags) if flags else "无"))
    with col_price:
        _render_breakdown(session.breakdown, exchange_rate)

    if session.state is SessionState.IDLE:
        cols = st.columns(4)
        for col, section in zip(cols, ("basic", "materials", "image")):
            with col:
                if st.button(f"✏️ 编辑{SECTION_LABELS[section]}", key=f"open_{product_id}_{section}"):
                    session.open_section(section)
                    st.rerun()
        with cols[3]:
            if _confirm_delete(f"product_{product_id}", product.name):
                try:
                    products.delete(product_id, confirmed=True)
                    st.session_state.edit_sessions.pop(product_id, None)
                    st.toast("商品已删除")
                    st.rerun()
                except ApiError as e:
                    st.error(f"删除失败: {e}")
        return

    render_section_form(session, rates)


def render_section_form(session: EditSession, rates: RateTable):
    section = session.section
    key = f"form_{session.product.id}_{section}"
    st.markdown(f"#### 编辑{SECTION_LABELS[section]}")

    with st.form(key):
        draft = session.draft
        if section == "basic":
            updates = {
                "name": st.text_input("名称", value=draft.get("name", "")),
                "description": st.text_area("描述", value=draft.get("description", "")),
                "base_price": st.number_input("基础价格 (₹)", value=float(draft.get("base_price") or 0.0), min_value=0.0),
                "is_new": st.checkbox("新品", value=bool(draft.get("is_new"))),
                "is_bestseller": st.checkbox("热销", value=bool(draft.get("is_bestseller"))),
                "is_featured": st.checkbox("精选", value=bool(draft.get("is_featured"))),
            }
        elif section == "materials":
            updates = _material_inputs(draft, rates, key)
        else:
            uploaded = st.file_uploader("选择主图", type=["jpg", "jpeg", "png", "webp"])
            updates = {}
            if uploaded is not None:
                updates = {"filename": uploaded.name, "content": uploaded.getvalue(), "content_type": uploaded.type}

        col_save, col_cancel = st.columns(2)
        with col_save:
            submitted = st.form_submit_button("💾 保存", type="primary")
        with col_cancel:
            cancelled = st.form_submit_button("取消")

    if cancelled:
        session.cancel()
        st.rerun()
    if submitted:
        session.update_draft(**updates)
        with st.spinner("正在保存..."):
            try:
                ok = session.save()
            except AuthenticationError:
                st.error("登录已过期，请重新登录后台后再保存 (已保留您的输入)。")
                return
        if ok:
            st.toast("已保存！")
            st.rerun()
        else:
            st.error(f"保存失败: {session.last_error}")


def render_featured(client: ApiClient):
    settings = st.session_state.settings
    products = ProductService(client, settings)
    catalog = CatalogService(client, settings)
    st.subheader("⭐ 精选商品")

    featured = products.featured()
    if not featured:
        st.info("暂无精选商品。")
        return
    rates = _rates(catalog)
    rows = {r["id"]: r for r in batch_calculate(featured, rates, overhead_pct=settings.overhead_pct, exchange_rate=catalog.exchange_rate())}

    cols = st.columns(3)
    for i, product in enumerate(featured):
        with cols[i % 3]:
            if product.image_url:
                st.image(product.image_url, use_container_width=True)
            st.markdown(f"**{product.name}**")
            total = rows.get(product.id, {}).get("total")
            st.caption(f"₹{total:,.0f}" if total else "价格待定")


def render_product_types(client: ApiClient):
    service = ProductTypeService(client)
    st.subheader("🗂️ 商品类型")

    with st.expander("➕ 新建商品类型"):
        with st.form("create_type", clear_on_submit=True):
            name = st.text_input("名称")
            description = st.text_area("描述")
            display_order = st.number_input("排序", value=100, min_value=0, step=1)
            is_active = st.checkbox("启用", value=True)
            icon = st.text_input("图标")
            color = st.text_input("颜色")
            if st.form_submit_button("创建", type="primary"):
                try:
                    created = service.create({
                        "name": name, "description": description, "display_order": display_order,
                        "is_active": is_active, "icon": icon, "color": color,
                    })
                    st.toast(f"已创建: {created.name}")
                except ValidationError as e:
                    st.error("; ".join(err["msg"] for err in e.errors()))
                except ApiError as e:
                    st.error(f"创建失败: {e}")

    col_search, col_status = st.columns([3, 1])
    with col_search:
        search = st.text_input("搜索类型", placeholder="名称或描述")
    with col_status:
        status = st.selectbox("状态", STATUS_TABS, format_func=STATUS_LABELS.get, key="type_status")
    for t in service.filter(service.list(), search=search, tab=status):
        with st.container(border=True):
            st.markdown(f"**{t.name}** {'' if t.is_active else '(停用)'} · 排序 {t.display_order}")
            if t.description:
                st.caption(t.description)
            with st.popover("编辑"):
                with st.form(f"edit_type_{t.id}"):
                    new_name = st.text_input("名称", value=t.name)
                    new_desc = st.text_area("描述", value=t.description)
                    new_order = st.number_input("排序", value=t.display_order, min_value=0, step=1)
                    new_active = st.checkbox("启用", value=t.is_active)
                    if st.form_submit_button("保存"):
                        try:
                            service.update(t.id, {
                                "name": new_name, "description": new_desc, "display_order": new_order,
                                "is_active": new_active, "icon": t.icon, "color": t.color,
                            })
                            st.toast("已保存")
                            st.rerun()
                        except ValidationError as e:
                            st.error("; ".join(err["msg"] for err in e.errors()))
                        except ApiError as e:
                            st.error(f"保存失败: {e}")
            if _confirm_delete(f"type_{t.id}", t.name):
                try:
                    service.delete(t.id, confirmed=True)
                    st.toast("已删除")
                    st.rerun()
                except ApiError as e:
                    st.error(f"删除失败: {e}")


def _catalog_form(form_key: str, entry=None) -> Dict[str, Any]:
    """目录条目表单控件，返回表单字段字典。"""
    return {
        "name": st.text_input("名称", value=entry.name if entry else "", key=f"{form_key}_name"),
        "price_modifier": st.number_input(
            "单价 (₹)", value=float(entry.price_modifier) if entry else 0.0, min_value=0.0, step=100.0,
            key=f"{form_key}_price",
        ),
        "description": st.text_area("描述", value=entry.description if entry else "", key=f"{form_key}_desc"),
        "display_order": st.number_input(
            "排序", value=entry.display_order if entry else 0, step=1, key=f"{form_key}_order"
        ),
        "is_active": st.checkbox("启用", value=entry.is_active if entry else True, key=f"{form_key}_active"),
        "color": st.text_input("颜色", value=entry.color if entry else "", key=f"{form_key}_color"),
    }


def render_catalog(client: ApiClient):
    catalog = CatalogService(client, st.session_state.settings)
    st.subheader("💎 金属/宝石目录")
    st.caption("这里维护的单价就是计价使用的费率，修改后所有价格按新费率重新计算。")

    kind = st.radio("类别", tuple(CATALOG_KINDS), format_func=lambda k: CATALOG_KINDS[k][0], horizontal=True)
    label, unit = CATALOG_KINDS[kind]
    if kind == "metal":
        entries = catalog.metal_types(admin=True)
        create, update, delete = catalog.create_metal_type, catalog.update_metal_type, catalog.delete_metal_type
    else:
        entries = catalog.stone_types(admin=True)
        create, update, delete = catalog.create_stone_type, catalog.update_stone_type, catalog.delete_stone_type

    with st.expander(f"➕ 新建{label}"):
        with st.form(f"create_{kind}", clear_on_submit=True):
            values = _catalog_form(f"new_{kind}")
            if st.form_submit_button("创建", type="primary"):
                try:
                    created = create(values)
                    st.toast(f"已创建: {created.name}")
                    st.rerun()
                except ValidationError as e:
                    st.error("; ".join(err["msg"] for err in e.errors()))
                except ApiError as e:
                    st.error(f"创建失败: {e}")

    col_search, col_status = st.columns([3, 1])
    with col_search:
        search = st.text_input(f"搜索{label}", placeholder="名称或描述")
    with col_status:
        status = st.selectbox("状态", STATUS_TABS, format_func=STATUS_LABELS.get, key=f"{kind}_status")

    for entry in catalog.filter(entries, search=search, tab=status):
        with st.container(border=True):
            st.markdown(
                f"**{entry.name}** {'' if entry.is_active else '(停用)'} · {unit} {entry.price_modifier:,.2f}"
            )
            if entry.description:
                st.caption(entry.description)
            with st.popover("编辑"):
                with st.form(f"edit_{kind}_{entry.id}"):
                    values = _catalog_form(f"edit_{kind}_{entry.id}", entry)
                    if st.form_submit_button("保存"):
                        try:
                            update(entry.id, values)
                            st.toast("已保存")
                            st.rerun()
                        except ValidationError as e:
                            st.error("; ".join(err["msg"] for err in e.errors()))
                        except ApiError as e:
                            st.error(f"保存失败: {e}")
            if _confirm_delete(f"{kind}_{entry.id}", entry.name):
                try:
                    delete(entry.id, confirmed=True)
                    st.toast("已删除")
                    st.rerun()
                except ApiError as e:
                    st.error(f"删除失败: {e}")


def render_messages(client: ApiClient):
    service = ContactMessageService(client)
    st.subheader("✉️ 联系留言")

    search = st.text_input("搜索留言", placeholder="姓名、邮箱、电话或内容")
    messages = service.list()
    tabs = st.tabs([
        f"全部 ({len(messages)})",
        f"未读 ({sum(1 for m in messages if not m.is_read)})",
        f"已读 ({sum(1 for m in messages if m.is_read)})",
    ])
    for tab, tab_name in zip(tabs, ("all", "unread", "read")):
        with tab:
            filtered = service.filter(messages, search=search, tab=tab_name)
            if not filtered:
                st.info("没有留言。")
            for m in filtered:
                with st.container(border=True):
                    badge = "" if m.is_read else "🟢 "
                    st.markdown(f"{badge}**{m.name}** · {m.email} {('· ' + m.phone) if m.phone else ''}")
                    if m.created_at:
                        st.caption(m.created_at.strftime("%Y-%m-%d %H:%M"))
                    st.write(m.message)
                    if not m.is_read and st.button("标记已读", key=f"read_{tab_name}_{m.id}"):
                        try:
                            service.mark_read(m.id)
                            st.rerun()
                        except ApiError as e:
                            st.error(f"操作失败: {e}")
                    if _confirm_delete(f"msg_{tab_name}_{m.id}", f"{m.name} 的留言"):
                        try:
                            service.delete(m.id, confirmed=True)
                            st.toast("留言已删除")
                            st.rerun()
                        except ApiError as e:
                            st.error(f"删除失败: {e}")


def render_calculator(client: ApiClient):
    settings = st.session_state.settings
    catalog = CatalogService(client, settings)
    st.subheader("🧮 计价工具")
    st.caption("📝 金属克重 × 每克单价 + 宝石克拉 × 每克拉单价，再加管理费。")

    rates = _rates(catalog)
    exchange_rate = catalog.exchange_rate()
    values = _material_inputs(MaterialSpec().__dict__, rates, "calc")
    breakdown = calculate_price(MaterialSpec(**values), rates, overhead_pct=settings.overhead_pct, exchange_rate=exchange_rate)
    _render_breakdown(breakdown, exchange_rate)


# ==========================================
# 主程序
# ==========================================

def main():
    st.set_page_config(page_title="首饰商城管理后台", page_icon="💍", layout="wide")
    init_session_state()

    st.title("💍 首饰商城管理后台")
    st.markdown("---")

    config = render_sidebar()
    client = get_client(config["api_base_url"])

    try:
        page = config["page"]
        if page == "products":
            render_products(client, config)
        elif page == "featured":
            render_featured(client)
        elif page == "types":
            render_product_types(client)
        elif page == "catalog":
            render_catalog(client)
        elif page == "messages":
            render_messages(client)
        else:
            render_calculator(client)
    except AuthenticationError:
        st.error("🔒 未登录或登录已过期，请先登录商城后台。")
        st.stop()
    except ApiError as e:
        st.error(f"发生错误: {e}")


if __name__ == "__main__":
    main()
