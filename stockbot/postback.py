from __future__ import annotations

from typing import Optional
from urllib.parse import parse_qs, urlencode

from .models import ParsedCommand
from .utils import sku_key

ACTION_WAREHOUSE_SELECT = "wh_select"
ACTION_OUTBOUND = "out"


def _int_field(values: dict, name: str) -> int:
    # Missing or malformed numbers decode to zero.
    raw = (values.get(name) or ["0"])[0].strip()
    try:
        return max(int(raw), 0)
    except ValueError:
        return 0


def parse_postback(data: Optional[str]) -> Optional[ParsedCommand]:
    """Purpose: Decode an interactive-tap payload into a tagged intent.
    Inputs/Outputs: Input is a key=value&... string; output is a
        warehouse_confirm/outbound_confirm ParsedCommand or None.
    Side Effects / State: None; never raises.
    Dependencies: Uses urllib.parse.parse_qs.
    Failure Modes: Unknown actions or empty payloads return None; bad numbers
        default to zero.
    If Removed: Quick-reply taps stop working.
    Testing Notes: Both actions, URL-encoded labels and garbage numbers.
    """
    text = str(data or "").strip()
    if not text:
        return None
    values = parse_qs(text, keep_blank_values=True)
    action = (values.get("a") or [""])[0]
    sku = sku_key((values.get("sku") or [""])[0])
    warehouse = (values.get("wh") or [""])[0].strip() or None

    if action == ACTION_WAREHOUSE_SELECT:
        return ParsedCommand(kind="warehouse_confirm", sku=sku, warehouse=warehouse, normalized=text)
    if action == ACTION_OUTBOUND:
        return ParsedCommand(
            kind="outbound_confirm",
            sku=sku,
            warehouse=warehouse,
            box=_int_field(values, "box"),
            piece=_int_field(values, "piece"),
            normalized=text,
        )
    return None


def encode_warehouse_select(sku: str, warehouse_code: str) -> str:
    return urlencode({"a": ACTION_WAREHOUSE_SELECT, "sku": sku, "wh": warehouse_code})


def encode_outbound(sku: str, warehouse_code: str, box: int, piece: int) -> str:
    return urlencode({"a": ACTION_OUTBOUND, "sku": sku, "wh": warehouse_code, "box": box, "piece": piece})
