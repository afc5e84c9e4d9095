"""Inventory chat agent: event pipeline and intent routing.

Pipeline data contract (fields on Turn passed across steps):
    - admitted: set by the dedup step; False drops the event silently.
    - command: tagged intent from the command parser or the postback decoder.
    - error: ParseError captured while decoding; answered with a format hint.

Step contracts:
    Log Event:
        Always runs; logs every inbound event.
    Dedup:
        Durable insert-once of the event id; duplicates stop the turn.
    Decode:
        Text -> normalizer + command parser, postback -> postback decoder.
        Skipped for event types other than message and postback.
    Route:
        Dispatches the intent to the SKU flow, warehouse selection, keyword or
        barcode search, cancellation or the outbound orchestrator, and turns
        user-facing errors into a corrective reply. Skipped when nothing decoded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from .catalog import ProductCatalog
from .command_parser import parse_command
from .config import Settings
from .errors import ParseError, ResolutionError, StockBotError, UpstreamError
from .idempotency import IdempotencyGuard
from .line_client import LineMessenger
from .models import LineEvent, ParsedCommand
from .orchestrator import OutboundOrchestrator
from .pipeline import Pipeline, PipelineStep, Turn
from .postback import parse_postback
from .replies import (
    BARCODE_MULTI_HEADER,
    CANCELLED,
    NOTHING_TO_CANCEL,
    PRODUCT_LIST_HEADER,
    SYSTEM_BUSY,
    barcode_miss_text,
    choose_warehouse_text,
    error_text,
    no_stock_text,
    product_quick_reply,
    query_miss_text,
    snapshot_text,
    version_text,
    warehouse_quick_reply,
)
from .state_store import AWAIT_SKU, AWAIT_WAREHOUSE, ConversationStateStore, LastSelectionCache
from .stock import StockAggregator
from .utils import business_date, host_of, sku_key
from .warehouses import warehouse_code

logger = logging.getLogger("stockbot.agent")

ROUTABLE_EVENT_TYPES = ("message", "postback")


def _not_routable(turn: Turn) -> bool:
    # follow, join, unsend and similar events are only logged and deduplicated.
    return turn.event.type not in ROUTABLE_EVENT_TYPES


def _nothing_to_route(turn: Turn) -> bool:
    return turn.command is None and turn.error is None


class InventoryAgent:
    def __init__(
        self,
        settings: Settings,
        guard: IdempotencyGuard,
        stock: StockAggregator,
        catalog: ProductCatalog,
        states: ConversationStateStore,
        selections: LastSelectionCache,
        orchestrator: OutboundOrchestrator,
        messenger: LineMessenger,
    ) -> None:
        """Purpose: Wire collaborators and build the event pipeline.
        Inputs/Outputs: Inputs are settings and collaborators; no return value.
        Side Effects / State: Constructs a Pipeline with ordered steps.
        Dependencies: Pipeline/PipelineStep and step methods on this class.
        Failure Modes: None at init; runtime errors occur within step functions.
        If Removed: The webhook has nothing to hand events to.
        Testing Notes: Instantiate with fakes and drive handle_event directly.
        """
        self._settings = settings
        self._guard = guard
        self._stock = stock
        self._catalog = catalog
        self._states = states
        self._selections = selections
        self._orchestrator = orchestrator
        self._messenger = messenger
        self._routes: Dict[str, Callable[[Turn, ParsedCommand], Awaitable[None]]] = {
            "version": self._on_version,
            "cancel": self._on_cancel,
            "query": self._on_query,
            "barcode": self._on_barcode,
            "sku": self._on_sku,
            "warehouse": self._on_warehouse,
            "outbound": self._on_outbound,
            "warehouse_confirm": self._on_warehouse_confirm,
            "outbound_confirm": self._on_outbound_confirm,
        }
        self._pipeline = Pipeline(
            steps=[
                PipelineStep("log_event", self._step_log_event, always_run=True),
                PipelineStep("dedup", self._step_dedup),
                PipelineStep("decode", self._step_decode, skip_if=_not_routable),
                PipelineStep("route", self._step_route, skip_if=_nothing_to_route),
            ]
        )

    async def handle_events(self, raw_events: List[Dict[str, Any]]) -> None:
        """Purpose: Process all events of one webhook delivery concurrently.
        Inputs/Outputs: Input is the raw "events" list; no return value.
        Side Effects / State: Runs handle_event per event.
        Dependencies: pydantic validation of LineEvent, asyncio.gather.
        Failure Modes: Invalid events and per-event exceptions are logged and
            dropped; one failing event never affects the others.
        If Removed: The background task of the webhook does nothing.
        Testing Notes: One raising event must not stop its sibling.
        """
        events: List[LineEvent] = []
        for raw in raw_events:
            try:
                events.append(LineEvent(**raw))
            except ValidationError as exc:
                logger.warning("skip malformed event err=%s", exc)
        results = await asyncio.gather(*(self.handle_event(ev) for ev in events), return_exceptions=True)
        for event, result in zip(events, results):
            if isinstance(result, Exception):
                logger.error(
                    "event failed actor=%s event_id=%s err=%r", event.actor_key, event.event_id, result,
                    exc_info=result,
                )

    async def handle_event(self, event: LineEvent) -> Turn:
        """Run the pipeline for one event and return the finished turn."""
        turn = Turn(event=event)
        await self._pipeline.run(turn)
        return turn

    async def _step_log_event(self, turn: Turn) -> None:
        event = turn.event
        logger.info(
            "event type=%s actor=%s event_id=%s text=%r postback=%r",
            event.type,
            event.actor_key,
            event.event_id,
            event.message.text if event.message else None,
            event.postback.data if event.postback else None,
        )

    async def _step_dedup(self, turn: Turn) -> None:
        turn.admitted = await self._guard.admit(turn.event)
        if not turn.admitted:
            turn.stop("duplicate")

    async def _step_decode(self, turn: Turn) -> None:
        """Purpose: Map the event to a tagged intent.
        Inputs/Outputs: Input is the Turn; sets turn.command or turn.error.
        Side Effects / State: Stops the turn for events not addressed to the bot.
        Dependencies: parse_command and parse_postback.
        Failure Modes: ParseError is captured on the turn, not raised.
        If Removed: Nothing is routed.
        Testing Notes: Plain chat stops with reason "no_command".
        """
        event = turn.event
        try:
            if event.type == "postback" and event.postback:
                turn.command = parse_postback(event.postback.data)
            elif event.type == "message" and event.message and event.message.type == "text":
                turn.command = parse_command(event.message.text or "")
        except ParseError as exc:
            turn.error = exc
            return
        if turn.command is None:
            turn.stop("no_command")

    async def _step_route(self, turn: Turn) -> None:
        """Purpose: Dispatch the intent and answer user-facing errors.
        Inputs/Outputs: Input is the Turn; no return value.
        Side Effects / State: Replies to the user; handlers may mutate state.
        Dependencies: self._routes and replies.error_text.
        Failure Modes: StockBotError subclasses become replies; upstream read
            failures are logged and answered with a busy message; anything else
            propagates to handle_events.
        If Removed: Parsed commands are never acted on.
        Testing Notes: A LedgerError surfaces its reason in the reply.
        """
        try:
            if turn.error is not None:
                raise turn.error
            handler = self._routes.get(turn.command.kind) if turn.command else None
            if handler is None:
                return
            await handler(turn, turn.command)
        except UpstreamError as exc:
            logger.error("upstream failure actor=%s err=%s", turn.actor_key, exc)
            await self._messenger.reply_text(turn.event, SYSTEM_BUSY)
        except StockBotError as exc:
            logger.info("user-facing error actor=%s type=%s detail=%s", turn.actor_key, type(exc).__name__, exc)
            await self._messenger.reply_text(turn.event, error_text(exc))

    async def _on_version(self, turn: Turn, command: ParsedCommand) -> None:
        settings = self._settings
        biz_date = business_date(settings.biz_day_cutover_hour, settings.biz_timezone)
        await self._messenger.reply_text(
            turn.event, version_text(settings.bot_version, host_of(settings.supabase_url), biz_date)
        )

    async def _on_cancel(self, turn: Turn, command: ParsedCommand) -> None:
        cleared = self._states.clear(turn.actor_key)
        await self._messenger.reply_text(turn.event, CANCELLED if cleared else NOTHING_TO_CANCEL)

    async def _on_query(self, turn: Turn, command: ParsedCommand) -> None:
        found = await self._stock.search(command.keyword)
        if not found:
            await self._messenger.reply_text(turn.event, query_miss_text(command.keyword))
            return
        if len(found) == 1:
            await self.sku_flow(turn, found[0].sku)
            return
        await self._messenger.reply_text(turn.event, PRODUCT_LIST_HEADER, product_quick_reply(found))

    async def _on_barcode(self, turn: Turn, command: ParsedCommand) -> None:
        found = await self._catalog.lookup_barcode(command.barcode)
        if not found:
            await self._messenger.reply_text(turn.event, barcode_miss_text(command.barcode))
            return
        if len(found) == 1:
            await self.sku_flow(turn, found[0].sku)
            return
        await self._messenger.reply_text(turn.event, BARCODE_MULTI_HEADER, product_quick_reply(found))

    async def _on_sku(self, turn: Turn, command: ParsedCommand) -> None:
        await self.sku_flow(turn, command.sku)

    async def sku_flow(self, turn: Turn, sku: str) -> None:
        """Purpose: Make a SKU the actor's current product and show its stock.
        Inputs/Outputs: Inputs are the turn and SKU; no return value.
        Side Effects / State: Remembers the SKU; completes a pending AWAIT_SKU
            outbound; drops an AWAIT_WAREHOUSE dialog of another SKU; remembers the
            warehouse when only one is stocked.
        Dependencies: StockAggregator, OutboundOrchestrator, ProductCatalog.
        Failure Modes: Ledger read errors propagate to the route step.
        If Removed: "編號", "#", barcode and single-hit query stop working.
        Testing Notes: Two stocked warehouses -> warehouse quick reply.
        """
        actor = turn.actor_key
        key = sku_key(sku)
        if not key:
            return
        self._selections.set_sku(actor, key)

        pending = self._states.get(actor)
        if pending is not None and pending.step == AWAIT_SKU:
            await self._orchestrator.continue_with_sku(turn, key, pending.box, pending.piece, pending.warehouse_hint)
            return
        if pending is not None and pending.step == AWAIT_WAREHOUSE and pending.sku != key:
            # The pending choice belongs to another product.
            self._states.clear(actor)

        warehouses = await self._stock.warehouses_for(key)
        if not warehouses:
            await self._messenger.reply_text(turn.event, no_stock_text(key))
            return
        if len(warehouses) >= 2:
            await self._messenger.reply_text(
                turn.event, choose_warehouse_text(key), warehouse_quick_reply(key, warehouses)
            )
            return
        chosen = warehouses[0]
        self._selections.set_warehouse(actor, chosen.code)
        product = await self._catalog.lookup(key)
        await self._messenger.reply_text(turn.event, snapshot_text(key, chosen, product.name))

    async def _on_warehouse(self, turn: Turn, command: ParsedCommand) -> None:
        pending = self._states.get(turn.actor_key)
        if pending is not None and pending.step == AWAIT_WAREHOUSE:
            await self._orchestrator.pick_warehouse(turn, pending, command.warehouse)
            return
        await self.show_warehouse(turn, "", command.warehouse)

    async def _on_warehouse_confirm(self, turn: Turn, command: ParsedCommand) -> None:
        await self.show_warehouse(turn, command.sku, command.warehouse)

    async def show_warehouse(self, turn: Turn, sku: str, warehouse: Optional[str]) -> None:
        """Remember the warehouse and reply with the SKU's live stock there."""
        actor = turn.actor_key
        key = sku_key(sku) or self._selections.get_sku(actor)
        if not key:
            raise ResolutionError("warehouse")
        code = warehouse_code(warehouse)
        self._selections.set_sku(actor, key)
        self._selections.set_warehouse(actor, code)
        snapshot = await self._stock.snapshot(key, code)
        product = await self._catalog.lookup(key)
        await self._messenger.reply_text(turn.event, snapshot_text(key, snapshot, product.name))

    async def _on_outbound(self, turn: Turn, command: ParsedCommand) -> None:
        await self._orchestrator.request(turn, command.box, command.piece, command.warehouse)

    async def _on_outbound_confirm(self, turn: Turn, command: ParsedCommand) -> None:
        await self._orchestrator.confirm(turn, command.sku, command.warehouse, command.box, command.piece)
