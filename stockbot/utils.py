import re
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlparse
from zoneinfo import ZoneInfo

FULLWIDTH_SPACE_RE = re.compile("　")
COMMA_RE = re.compile(r"[，,、]")
WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: Optional[str]) -> str:
    """Purpose: Canonicalize whitespace and comma variants before command parsing.
    Inputs/Outputs: Input is a raw chat string; output is a trimmed string with
        full-width spaces and commas turned into single ASCII spaces.
    Side Effects / State: None; pure function.
    Dependencies: Uses module-level regexes; called by the command parser.
    Failure Modes: Returns an empty string for falsy or non-string input.
    If Removed: "出3箱，2件" and "出3箱　2件" stop parsing as commands.
    Testing Notes: Verify full-width space, both comma widths and runs of spaces.
    """
    # Fold every separator variant into one ASCII space and trim.
    if not text or not isinstance(text, str):
        return ""
    cleaned = FULLWIDTH_SPACE_RE.sub(" ", text)
    cleaned = COMMA_RE.sub(" ", cleaned)
    return WHITESPACE_RE.sub(" ", cleaned).strip()


def sku_key(value: object) -> str:
    """Canonical SKU key: trimmed and lowercased."""
    return str(value or "").strip().lower()


def pick_num(value: object, fallback: float = 0) -> float:
    """Purpose: Coerce a loosely typed numeric field to a number.
    Inputs/Outputs: Input is any value and a fallback; output is a float or int.
    Side Effects / State: None.
    Dependencies: None; used when reading ledger rows.
    Failure Modes: Non-numeric, NaN or infinite input returns the fallback.
    If Removed: Ledger rows with null or string quantities break aggregation.
    Testing Notes: Check None, "3", "x" and float("nan").
    """
    # Accept ints, floats and numeric strings; reject everything else.
    if value is None or isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if number != number or number in (float("inf"), float("-inf")):
        return fallback
    return int(number) if number.is_integer() else number


def format_qty(value: float) -> str:
    # Quantities are whole in practice; drop the trailing ".0" when they are.
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def format_money(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return f"{value:,.2f}".rstrip("0").rstrip(".")


def business_date(
    cutover_hour: int = 5,
    tz_name: str = "Asia/Taipei",
    now: Optional[datetime] = None,
) -> str:
    """Purpose: Compute the business date anchored to a daily cutover time.
    Inputs/Outputs: Inputs are the cutover hour, timezone name and optional "now";
        output is an ISO date string (YYYY-MM-DD).
    Side Effects / State: Reads the wall clock when now is omitted.
    Dependencies: Uses zoneinfo for the local timezone.
    Failure Modes: Unknown timezone names raise ZoneInfoNotFoundError.
    If Removed: Stock listing and audit payloads lose their reporting date.
    Testing Notes: 04:59 local belongs to the previous day, 05:00 to the current.
    """
    # Shift back by the cutover so early-morning activity counts for the prior day.
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    local = current.astimezone(ZoneInfo(tz_name)) - timedelta(hours=cutover_hour)
    return local.date().isoformat()


def local_now_iso(tz_name: str = "Asia/Taipei", now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(ZoneInfo(tz_name)).replace(microsecond=0).isoformat()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def host_of(url: str) -> str:
    """Host part of a URL, or the raw string when it does not parse."""
    parsed = urlparse(url or "")
    return parsed.netloc or str(url or "")
