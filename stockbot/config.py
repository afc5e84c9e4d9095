from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for credentials, collaborators, and runtime limits."""
    line_channel_secret: str
    line_channel_access_token: str
    line_api_base: str
    supabase_url: str
    supabase_service_key: str
    group_code: str
    gas_webhook_url: str
    gas_webhook_secret: str
    bot_version: str
    http_timeout_sec: float
    state_ttl_sec: int
    outbound_lock_ttl_sec: int
    stock_list_ttl_sec: int
    product_cache_ttl_sec: int
    biz_day_cutover_hour: int
    biz_timezone: str


def _int_env(name: str, default: int) -> int:
    # int() raises ValueError on malformed values, which aborts startup.
    return int(os.getenv(name, str(default)))


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables.
    Dependencies: Uses os.getenv; the .env file is loaded by the app module first.
    Failure Modes: Missing LINE or Supabase credentials raise ValueError; malformed
        numeric values raise ValueError.
    If Removed: The bot cannot reach LINE or the ledger and fails at startup.
    Testing Notes: Verify defaults and overrides via monkeypatched environment.
    """
    # Read credentials first so misconfiguration fails fast.
    secret = os.getenv("LINE_CHANNEL_SECRET", "")
    token = os.getenv("LINE_CHANNEL_ACCESS_TOKEN", "")
    if not secret or not token:
        raise ValueError("LINE_CHANNEL_SECRET and LINE_CHANNEL_ACCESS_TOKEN are required")
    supabase_url = os.getenv("SUPABASE_URL", "")
    supabase_key = os.getenv("SUPABASE_SERVICE_KEY", "")
    if not supabase_url or not supabase_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required")

    return Settings(
        line_channel_secret=secret,
        line_channel_access_token=token,
        line_api_base=os.getenv("LINE_API_BASE", "https://api.line.me").rstrip("/"),
        supabase_url=supabase_url.rstrip("/"),
        supabase_service_key=supabase_key,
        group_code=os.getenv("GROUP_CODE", "catch_0001").strip().lower(),
        gas_webhook_url=os.getenv("GAS_WEBHOOK_URL", "").strip(),
        gas_webhook_secret=os.getenv("GAS_WEBHOOK_SECRET", "").strip(),
        bot_version=os.getenv("BOT_VERSION", "V2026-01-17_DB_DEDUP_PUSH_GAS_PIECE_UNITS"),
        http_timeout_sec=float(os.getenv("HTTP_TIMEOUT_SEC", "8")),
        state_ttl_sec=_int_env("STATE_TTL_SEC", 30 * 60),
        outbound_lock_ttl_sec=_int_env("OUTBOUND_LOCK_TTL_SEC", 5),
        stock_list_ttl_sec=_int_env("STOCK_LIST_TTL_SEC", 3),
        product_cache_ttl_sec=_int_env("PRODUCT_CACHE_TTL_SEC", 5 * 60),
        biz_day_cutover_hour=_int_env("BIZ_DAY_CUTOVER_HOUR", 5),
        biz_timezone=os.getenv("BIZ_TIMEZONE", "Asia/Taipei"),
    )
