"""
命令行入口：计价、管理商品类型与联系留言、导出商品价格表。
用法示例：
    python cli_app.py price --metal "18K Gold" --metal-weight 10 --primary Diamond --primary-weight 0.5
    python cli_app.py types create --name Rings
    python cli_app.py catalog create metal --name Platinum --price 3200
    python cli_app.py messages list --tab unread --search gmail
    python cli_app.py export --out prices.xlsx
"""
import argparse
import sys
import time

from pydantic import ValidationError

from jewelry_store.api_client import ApiClient, ApiError, AuthenticationError
from jewelry_store.config import load_settings, setup_logging
from jewelry_store.exporter import export_to_excel, quick_check
from jewelry_store.models import MaterialSpec, NONE_SENTINEL
from jewelry_store.pricing.calculator import calculate_price
from jewelry_store.pricing.engine import batch_calculate
from jewelry_store.pricing.rates import RateTable
from jewelry_store.service import (
    CatalogService,
    ContactMessageService,
    ConfirmationRequired,
    ProductService,
    ProductTypeService,
)


def _parse_rates(pairs):
    """解析 名称=单价 形式的参数列表。"""
    rates = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"费率格式应为 名称=单价: {pair}")
        rates[name.strip()] = float(value)
    return rates


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="首饰商城后台工具")
    parser.add_argument("--api", help="后端地址，默认读取 STORE_API_BASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    # 计价
    p_price = sub.add_parser("price", help="按材料规格计算价格")
    p_price.add_argument("--metal", required=True, help="金属类型")
    p_price.add_argument("--metal-weight", type=float, default=0.0, help="金属克重 (g)")
    for slot in ("primary", "secondary", "other"):
        p_price.add_argument(f"--{slot}", default=NONE_SENTINEL, help=f"{slot} 宝石类型")
        p_price.add_argument(f"--{slot}-weight", type=float, default=0.0, help=f"{slot} 宝石克拉")
    p_price.add_argument("--metal-rate", action="append", help="离线费率: 名称=每克单价，可重复")
    p_price.add_argument("--stone-rate", action="append", help="离线费率: 名称=每克拉单价，可重复")
    p_price.add_argument("--overhead", type=float, help="管理费比例，默认 0.25")
    p_price.add_argument("--exchange-rate", type=float, help="USD→INR 汇率")

    # 商品类型
    p_types = sub.add_parser("types", help="商品类型管理")
    types_sub = p_types.add_subparsers(dest="action", required=True)
    types_sub.add_parser("list")
    t_create = types_sub.add_parser("create")
    t_create.add_argument("--name", required=True)
    t_create.add_argument("--description", default="")
    t_create.add_argument("--display-order", type=int, default=100)
    t_create.add_argument("--inactive", action="store_true")
    t_delete = types_sub.add_parser("delete")
    t_delete.add_argument("id", type=int)
    t_delete.add_argument("--yes", action="store_true", help="确认删除")

    # 金属/宝石目录
    p_cat = sub.add_parser("catalog", help="金属/宝石目录 (计价费率) 管理")
    cat_sub = p_cat.add_subparsers(dest="action", required=True)
    c_list = cat_sub.add_parser("list")
    c_list.add_argument("kind", choices=["metal", "stone"])
    c_list.add_argument("--tab", choices=["all", "active", "inactive"], default="all")
    c_list.add_argument("--search", default="")
    for name in ("create", "update"):
        c_save = cat_sub.add_parser(name)
        c_save.add_argument("kind", choices=["metal", "stone"])
        if name == "update":
            c_save.add_argument("id", type=int)
        c_save.add_argument("--name", required=True)
        c_save.add_argument("--price", type=float, required=True, help="金属为每克单价，宝石为每克拉单价")
        c_save.add_argument("--description", default="")
        c_save.add_argument("--display-order", type=int, default=0)
        c_save.add_argument("--inactive", action="store_true")
    c_delete = cat_sub.add_parser("delete")
    c_delete.add_argument("kind", choices=["metal", "stone"])
    c_delete.add_argument("id", type=int)
    c_delete.add_argument("--yes", action="store_true", help="确认删除")

    # 联系留言
    p_msg = sub.add_parser("messages", help="联系留言管理")
    msg_sub = p_msg.add_subparsers(dest="action", required=True)
    m_list = msg_sub.add_parser("list")
    m_list.add_argument("--tab", choices=["all", "unread", "read"], default="all")
    m_list.add_argument("--search", default="")
    m_read = msg_sub.add_parser("mark-read")
    m_read.add_argument("id", type=int)
    m_delete = msg_sub.add_parser("delete")
    m_delete.add_argument("id", type=int)
    m_delete.add_argument("--yes", action="store_true", help="确认删除")

    # 导出
    p_export = sub.add_parser("export", help="导出商品价格表")
    p_export.add_argument("--out", default="", help="导出文件名")

    return parser


def cmd_price(args, settings, client):
    spec = MaterialSpec(
        metal_type=args.metal,
        metal_weight=args.metal_weight,
        primary_stone=args.primary,
        primary_stone_weight=args.primary_weight,
        secondary_stone=args.secondary,
        secondary_stone_weight=args.secondary_weight,
        other_stone=args.other,
        other_stone_weight=args.other_weight,
    )
    catalog = CatalogService(client, settings)
    if args.metal_rate or args.stone_rate:
        rates = RateTable(_parse_rates(args.metal_rate), _parse_rates(args.stone_rate))
    else:
        print("正在读取金属/宝石目录...")
        rates = catalog.rate_table()

    exchange_rate = args.exchange_rate or catalog.exchange_rate()
    overhead = settings.overhead_pct if args.overhead is None else args.overhead
    b = calculate_price(spec, rates, overhead_pct=overhead, exchange_rate=exchange_rate)

    print(f"金属成本:   ₹{b.metal_cost:,.2f}")
    print(f"主石成本:   ₹{b.primary_stone_cost:,.2f}")
    print(f"副石成本:   ₹{b.secondary_stone_cost:,.2f}")
    print(f"其他宝石:   ₹{b.other_stone_cost:,.2f}")
    print(f"材料小计:   ₹{b.subtotal:,.2f}")
    print(f"管理费:     ₹{b.overhead:,.0f} ({overhead:.0%})")
    print(f"总价:       ₹{b.total:,.2f}  ≈ ${b.total_usd:,.0f} (汇率 {exchange_rate})")
    if b.missing_rates:
        print(f"⚠️ 以下类型缺少费率，按 0 计: {', '.join(b.missing_rates)}")


def cmd_types(args, settings, client):
    service = ProductTypeService(client)
    if args.action == "list":
        for t in service.list():
            status = "启用" if t.is_active else "停用"
            print(f"[{t.id}] {t.name} (排序 {t.display_order}, {status}) {t.description}")
    elif args.action == "create":
        created = service.create({
            "name": args.name,
            "description": args.description,
            "display_order": args.display_order,
            "is_active": not args.inactive,
        })
        print(f"✅ 已创建商品类型 [{created.id}] {created.name}")
    elif args.action == "delete":
        service.delete(args.id, confirmed=args.yes)
        print(f"✅ 已删除商品类型 {args.id}")


def cmd_catalog(args, settings, client):
    catalog = CatalogService(client, settings)
    label = "金属" if args.kind == "metal" else "宝石"
    if args.action == "list":
        entries = catalog.metal_types(admin=True) if args.kind == "metal" else catalog.stone_types(admin=True)
        for e in catalog.filter(entries, search=args.search, tab=args.tab):
            status = "启用" if e.is_active else "停用"
            print(f"[{e.id}] {e.name} ₹{e.price_modifier:,.2f} ({status}) {e.description}")
        return

    if args.action == "delete":
        delete = catalog.delete_metal_type if args.kind == "metal" else catalog.delete_stone_type
        delete(args.id, confirmed=args.yes)
        print(f"✅ 已删除{label}类型 {args.id}")
        return

    form = {
        "name": args.name,
        "price_modifier": args.price,
        "description": args.description,
        "display_order": args.display_order,
        "is_active": not args.inactive,
    }
    if args.action == "create":
        create = catalog.create_metal_type if args.kind == "metal" else catalog.create_stone_type
        saved = create(form)
    else:
        update = catalog.update_metal_type if args.kind == "metal" else catalog.update_stone_type
        saved = update(args.id, form)
    print(f"✅ 已保存{label}类型 [{saved.id}] {saved.name}: ₹{saved.price_modifier:,.2f}")


def cmd_messages(args, settings, client):
    service = ContactMessageService(client)
    if args.action == "list":
        messages = service.filter(service.list(), search=args.search, tab=args.tab)
        for m in messages:
            flag = "  " if m.is_read else "● "
            when = m.created_at.strftime("%Y-%m-%d %H:%M") if m.created_at else "-"
            print(f"{flag}[{m.id}] {when} {m.name} <{m.email}> {m.phone or ''}")
            print(f"    {m.message}")
        print(f"共 {len(messages)} 条")
    elif args.action == "mark-read":
        service.mark_read(args.id)
        print(f"✅ 留言 {args.id} 已标记为已读")
    elif args.action == "delete":
        service.delete(args.id, confirmed=args.yes)
        print(f"✅ 已删除留言 {args.id}")


def cmd_export(args, settings, client):
    products = ProductService(client, settings)
    catalog = CatalogService(client, settings)

    print("正在读取商品与目录...")
    items = products.list()
    try:
        rates = catalog.rate_table()
    except ApiError as e:
        print(f"目录读取失败，改用缓存价格: {e}")
        rates = RateTable()

    rows = batch_calculate(
        items, rates, overhead_pct=settings.overhead_pct, exchange_rate=catalog.exchange_rate()
    )
    out_path = export_to_excel(rows, args.out)
    print(f"结果已导出至: {out_path}")
    print("核对报告:", quick_check(rows))


COMMANDS = {
    "price": cmd_price,
    "types": cmd_types,
    "catalog": cmd_catalog,
    "messages": cmd_messages,
    "export": cmd_export,
}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    setup_logging(settings.log_level)
    client = ApiClient(args.api or settings.api_base_url, timeout=settings.api_timeout)

    start = time.time()
    try:
        COMMANDS[args.command](args, settings, client)
    except AuthenticationError:
        print("❌ 未登录或登录已过期，请先在后台登录。")
        return 2
    except ConfirmationRequired as e:
        print(f"⚠️ {e}，请加上 --yes 参数。")
        return 1
    except ValidationError as e:
        print(f"❌ 输入不合法: {e}")
        return 1
    except (ApiError, ValueError) as e:
        print(f"❌ 发生错误: {e}")
        return 1

    duration = time.time() - start
    print(f"总耗时: {duration:.2f} 秒")
    return 0


if __name__ == "__main__":
    sys.exit(main())
