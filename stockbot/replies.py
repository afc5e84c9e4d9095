"""User-facing reply texts and quick-reply builders (Traditional Chinese)."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from .command_parser import canonical_outbound
from .errors import (
    InsufficientStockError,
    LedgerError,
    LedgerTimeoutError,
    OutboundBusyError,
    ParseError,
    ResolutionError,
)
from .models import ProductInfo, WarehouseStock
from .postback import encode_outbound, encode_warehouse_select
from .utils import format_money, format_qty

QUICK_REPLY_LIMIT = 12
LABEL_LIMIT = 20

OUT_FORMAT_HINT = "指令格式：出3箱2件 / 出3箱 / 出2件（出1/出1個/出1散 都視為件，不要加多餘文字）"
SELECT_PRODUCT_FIRST = "請先用「查 xxx」或「編號 a564」選定「有庫存」商品後再出庫"
SELECT_PRODUCT_BEFORE_WAREHOUSE = "請先用「查 xxx」或「編號 a564」選定商品，再選倉庫"
PICK_WAREHOUSE_FOR_OUT = "請選擇要出庫的倉庫"
NO_STOCK_ANYWHERE = "所有倉庫皆無庫存，無法出庫"
OUTBOUND_BUSY = "上一筆出庫處理中，請稍後再試"
CANCELLED = "已取消進行中的出庫"
NOTHING_TO_CANCEL = "目前沒有進行中的出庫"
SYSTEM_BUSY = "系統忙碌，請稍後再試"
PRODUCT_LIST_HEADER = "找到以下品項（只含當日有庫存）"
BARCODE_MULTI_HEADER = "條碼找到多筆，請選擇商品"


def stock_line(snapshot: WarehouseStock) -> str:
    return f"{format_qty(snapshot.box)}箱{format_qty(snapshot.piece)}件"


def snapshot_text(sku: str, snapshot: WarehouseStock, name: str = "") -> str:
    lines = [f"編號：{sku}"]
    if name and name != sku:
        lines.append(f"品名：{name}")
    lines.append(f"倉庫類別：{snapshot.label}")
    lines.append(f"庫存：{stock_line(snapshot)}")
    if snapshot.unit_cost is not None:
        lines.append(f"單價：{format_money(snapshot.unit_cost)}／件")
        lines.append(f"庫存金額：{format_money(snapshot.amount)}")
    return "\n".join(lines)


def choose_warehouse_text(sku: str) -> str:
    return f"編號：{sku}\n👉請選擇倉庫"


def no_stock_text(sku: str) -> str:
    return f"無此商品庫存：{sku}"


def query_miss_text(keyword: str) -> str:
    return f"無此商品庫存（只查當日有庫存清單）\n關鍵字：{keyword}"


def barcode_miss_text(barcode: str) -> str:
    return f"無此條碼：{barcode}"


def version_text(bot_version: str, db_host: str, biz_date: str) -> str:
    return f"BOT={bot_version}\nDB_HOST={db_host}\nBIZ_DATE_0500={biz_date}"


def outbound_success_text(sku: str, box: int, piece: int, before: WarehouseStock, after: WarehouseStock) -> str:
    return (
        f"✅ 出庫成功\n編號：{sku}\n倉別：{after.label}\n出庫：{box}箱 {piece}件\n"
        f"出庫前：{stock_line(before)}\n👉目前庫存：{stock_line(after)}"
    )


def error_text(exc: Exception) -> str:
    """Purpose: Turn a user-facing error into its corrective reply.
    Inputs/Outputs: Input is a StockBotError; output is reply text.
    Side Effects / State: None.
    Dependencies: Error classes from errors.py.
    Failure Modes: Unknown errors map to a generic busy message.
    If Removed: Errors would end turns silently.
    Testing Notes: One assertion per error class.
    """
    if isinstance(exc, ParseError):
        return OUT_FORMAT_HINT
    if isinstance(exc, ResolutionError):
        if exc.missing == "sku":
            return SELECT_PRODUCT_FIRST
        return SELECT_PRODUCT_BEFORE_WAREHOUSE
    if isinstance(exc, InsufficientStockError):
        snap = exc.snapshot
        return f"庫存不足，無法出庫（倉別：{snap.label}）\n目前庫存：{stock_line(snap)}"
    if isinstance(exc, LedgerTimeoutError):
        return "操作逾時，請先查詢庫存確認結果後再決定是否重送"
    if isinstance(exc, LedgerError):
        return f"操作失敗：{exc.reason or '未知錯誤'}"
    if isinstance(exc, OutboundBusyError):
        return OUTBOUND_BUSY
    return SYSTEM_BUSY


def _label(text: str) -> str:
    return text[:LABEL_LIMIT]


def product_quick_reply(items: Iterable[ProductInfo]) -> Dict[str, Any]:
    entries: List[Dict[str, Any]] = []
    for item in list(items)[:QUICK_REPLY_LIMIT]:
        entries.append(
            {
                "type": "action",
                "action": {"type": "message", "label": _label(item.name or item.sku), "text": f"編號 {item.sku}"},
            }
        )
    return {"items": entries}


def warehouse_quick_reply(sku: str, warehouses: Iterable[WarehouseStock]) -> Dict[str, Any]:
    entries: List[Dict[str, Any]] = []
    for wh in list(warehouses)[:QUICK_REPLY_LIMIT]:
        entries.append(
            {
                "type": "action",
                "action": {
                    "type": "postback",
                    "label": _label(f"{wh.label}（{stock_line_short(wh)}）"),
                    "data": encode_warehouse_select(sku, wh.code),
                    "displayText": f"倉 {wh.label}",
                },
            }
        )
    return {"items": entries}


def outbound_quick_reply(
    sku: str, box: int, piece: int, warehouses: Iterable[WarehouseStock]
) -> Dict[str, Any]:
    entries: List[Dict[str, Any]] = []
    for wh in list(warehouses)[:QUICK_REPLY_LIMIT]:
        entries.append(
            {
                "type": "action",
                "action": {
                    "type": "postback",
                    "label": _label(f"{wh.label}（{stock_line_short(wh)}）"),
                    "data": encode_outbound(sku, wh.code, box, piece),
                    "displayText": canonical_outbound("出", box, piece, wh.code),
                },
            }
        )
    return {"items": entries}


def stock_line_short(snapshot: WarehouseStock) -> str:
    return f"{format_qty(snapshot.box)}箱/{format_qty(snapshot.piece)}件"
