from __future__ import annotations

import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Tuple

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from .catalog import ProductCatalog
from .config import Settings, load_settings
from .conversation import InventoryAgent
from .idempotency import DedupStore, IdempotencyGuard, OutboundLock
from .ledger import LedgerGateway
from .line_client import LineMessenger, verify_signature
from .models import WebhookBody
from .notifier import AuditNotifier
from .orchestrator import OutboundOrchestrator
from .state_store import ConversationStateStore, LastSelectionCache
from .stock import StockAggregator
from .supabase_rest import SupabaseRest
from .utils import business_date, host_of

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("stockbot").setLevel(log_level)
logger = logging.getLogger("stockbot.app")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)


def build_agent(settings: Settings) -> Tuple[InventoryAgent, List[Callable[[], Awaitable[None]]]]:
    """Purpose: Construct every collaborator and the inventory agent.
    Inputs/Outputs: Input is Settings; output is the wired InventoryAgent and
        the close hooks of the HTTP clients it owns.
    Side Effects / State: Creates the HTTP clients and process-local stores.
    Dependencies: All stockbot components.
    Failure Modes: None at construction; network errors happen per request.
    If Removed: The webhook has no agent to hand events to.
    Testing Notes: Tests build the agent from fakes instead.
    """
    # Share one REST client between ledger, catalog and dedup store.
    rest = SupabaseRest(settings.supabase_url, settings.supabase_service_key, settings.http_timeout_sec)
    ledger = LedgerGateway(rest)
    catalog = ProductCatalog(rest, ttl_sec=settings.product_cache_ttl_sec)
    stock = StockAggregator(
        ledger,
        catalog,
        group=settings.group_code,
        biz_date=lambda: business_date(settings.biz_day_cutover_hour, settings.biz_timezone),
        list_ttl_sec=settings.stock_list_ttl_sec,
    )
    guard = IdempotencyGuard(DedupStore(rest, settings.group_code), OutboundLock(settings.outbound_lock_ttl_sec))
    states = ConversationStateStore(ttl_sec=settings.state_ttl_sec)
    selections = LastSelectionCache()
    messenger = LineMessenger(settings.line_channel_access_token, settings.line_api_base, settings.http_timeout_sec)
    notifier = AuditNotifier(settings.gas_webhook_url, settings.gas_webhook_secret, settings.http_timeout_sec)
    orchestrator = OutboundOrchestrator(
        settings=settings,
        stock=stock,
        ledger=ledger,
        guard=guard,
        states=states,
        selections=selections,
        messenger=messenger,
        notifier=notifier,
    )
    agent = InventoryAgent(
        settings=settings,
        guard=guard,
        stock=stock,
        catalog=catalog,
        states=states,
        selections=selections,
        orchestrator=orchestrator,
        messenger=messenger,
    )
    return agent, [rest.aclose, messenger.aclose]


def create_app(settings: Optional[Settings] = None, agent: Optional[InventoryAgent] = None) -> FastAPI:
    """Purpose: Build the FastAPI application exposing the LINE webhook.
    Inputs/Outputs: Optional settings and pre-built agent; returns a FastAPI app.
    Side Effects / State: Loads settings from the environment when not given.
    Dependencies: FastAPI, load_settings, build_agent.
    Failure Modes: Missing credentials raise ValueError from load_settings.
    If Removed: No HTTP entry point ("uvicorn stockbot.app:create_app --factory").
    Testing Notes: Pass fakes and use fastapi.testclient.TestClient.
    """
    settings = settings or load_settings()
    closers: List[Callable[[], Awaitable[None]]] = []
    if agent is None:
        agent, closers = build_agent(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "LINE bot running ver=%s db_host=%s gas=%s",
            settings.bot_version,
            host_of(settings.supabase_url),
            "on" if settings.gas_webhook_url and settings.gas_webhook_secret else "off",
        )
        yield
        for close in closers:
            await close()

    app = FastAPI(title="LINE Inventory Bot", lifespan=lifespan)

    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        return "ok"

    @app.post("/webhook", response_class=PlainTextResponse)
    async def webhook(request: Request, background_tasks: BackgroundTasks) -> str:
        """Purpose: Acknowledge a LINE delivery and process it off the response path.
        Inputs/Outputs: Raw request with x-line-signature; returns "OK" (200).
        Side Effects / State: Schedules InventoryAgent.handle_events as a background task.
        Dependencies: verify_signature, WebhookBody, BackgroundTasks.
        Failure Modes: Bad signature or body -> 400; processing errors never reach
            the response.
        If Removed: LINE events are never received.
        Testing Notes: Signed body -> 200 and one scheduled call; unsigned -> 400.
        """
        # Acknowledge immediately so LINE does not redeliver.
        body = await request.body()
        if not verify_signature(settings.line_channel_secret, body, request.headers.get("x-line-signature")):
            raise HTTPException(status_code=400, detail="invalid signature")
        try:
            payload = WebhookBody(**json.loads(body or b"{}"))
        except (ValueError, ValidationError) as exc:
            raise HTTPException(status_code=400, detail="invalid body") from exc
        background_tasks.add_task(agent.handle_events, payload.events)
        return "OK"

    return app
