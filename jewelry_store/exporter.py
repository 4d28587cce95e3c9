"""
导出与快速核对模块。
负责将商品价格表导出为 Excel 文件（支持本地文件和内存流），并生成简要的数据核对报告。
"""
import os
import re
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Tuple, Union

import pandas as pd
from openpyxl import load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

# 导出列 (行字段 -> 表头)
EXPORT_COLUMNS = {
    "id": "商品ID",
    "name": "商品名称",
    "metalType": "金属",
    "metalWeight": "金属克重(g)",
    "mainStoneType": "主石",
    "mainStoneWeight": "主石克拉",
    "secondaryStoneType": "副石",
    "secondaryStoneWeight": "副石克拉",
    "otherStoneType": "其他宝石",
    "otherStoneWeight": "其他宝石克拉",
    "metalCost": "金属成本(₹)",
    "primaryStoneCost": "主石成本(₹)",
    "secondaryStoneCost": "副石成本(₹)",
    "otherStoneCost": "其他宝石成本(₹)",
    "subtotal": "材料小计(₹)",
    "overhead": "管理费(₹)",
    "total": "总价(₹)",
    "totalUSD": "总价($)",
    "price_source": "价格来源",
    "error": "错误信息",
}


def generate_excel_bytes(rows: List[Dict[str, Any]], base_name: str = "") -> Tuple[BytesIO, str]:
    """
    生成 Excel 文件的内存流和建议文件名。
    """
    file_name = _generate_filename(base_name)
    output = BytesIO()
    _write_excel_data(rows, output)
    output.seek(0)
    return output, file_name


def export_to_excel(rows: List[Dict[str, Any]], path: str = "") -> str:
    """
    将价格表导出为本地 Excel 文件。path 为空或为目录时自动生成文件名。
    """
    if not path or path.endswith("/") or path.endswith("\\"):
        path = os.path.join(path, _generate_filename())
    _write_excel_data(rows, path)
    return path


def quick_check(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    """
    生成快速核对报告，统计关键指标。
    """
    return {
        "商品总数": len(rows),
        "缺少金属信息": sum(1 for r in rows if r.get("metalType") in (None, "Unknown")),
        "总价为0": sum(1 for r in rows if not r.get("total")),
        "费率缺失": sum(1 for r in rows if r.get("missingRates")),
        "计价出错": sum(1 for r in rows if r.get("error")),
    }


# ==========================================
# 内部辅助函数
# ==========================================

def _generate_filename(base_name: str = "") -> str:
    """根据基础文件名生成带时间戳的文件名。"""
    name = os.path.splitext(base_name)[0] if base_name else "商品价格表"
    safe_name = re.sub(r'[\\/:*?"<>|]', '_', name)
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    return f"{safe_name}_{timestamp}.xlsx"


def _write_excel_data(rows: List[Dict[str, Any]], target: Union[str, BytesIO]):
    """核心导出逻辑：写入数据并调用格式化。"""
    records = [{label: row.get(key, "") for key, label in EXPORT_COLUMNS.items()} for row in rows]
    df = pd.DataFrame(records, columns=list(EXPORT_COLUMNS.values()))
    df.to_excel(target, index=False, sheet_name="商品价格")

    if isinstance(target, BytesIO):
        target.seek(0)
    _format_excel(target)


def _format_excel(target: Union[str, BytesIO]):
    """对 Excel 文件进行美化格式化。"""
    wb = load_workbook(target)
    ws = wb.active

    header_fill = PatternFill(start_color="8B6F47", end_color="8B6F47", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF", size=11)
    border = Border(
        left=Side(style='thin'), right=Side(style='thin'),
        top=Side(style='thin'), bottom=Side(style='thin')
    )
    center_align = Alignment(horizontal="center", vertical="center", wrap_text=True)
    left_align = Alignment(horizontal="left", vertical="center", wrap_text=True)

    # 格式化表头
    for cell in ws[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = center_align
        cell.border = border

    # 格式化数据行
    for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
        for cell in row:
            cell.border = border
            cell.alignment = left_align

    # 自动调整列宽
    for column in ws.columns:
        max_length = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)
        ws.column_dimensions[column[0].column_letter].width = min(max_length + 2, 40)

    ws.freeze_panes = "A2"
    if isinstance(target, BytesIO):
        target.seek(0)
        target.truncate()
    wb.save(target)
