"""Outbound orchestration: warehouse resolution, pre-checks and the ledger call.

Steps before the ledger call are advisory. The ledger re-validates sufficiency
inside its own transaction, and a fresh snapshot is read for every pre-check
and again after the mutation; snapshots are never reused across that boundary.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from .config import Settings
from .errors import (
    InsufficientStockError,
    LedgerError,
    OutboundBusyError,
    ParseError,
    ResolutionError,
    UpstreamError,
)
from .idempotency import IdempotencyGuard
from .ledger import LedgerGateway
from .line_client import LineMessenger
from .models import ActorState, WarehouseStock
from .notifier import AuditNotifier
from .pipeline import Turn
from .replies import (
    NO_STOCK_ANYWHERE,
    PICK_WAREHOUSE_FOR_OUT,
    outbound_quick_reply,
    outbound_success_text,
)
from .state_store import ConversationStateStore, LastSelectionCache
from .stock import StockAggregator
from .utils import business_date, host_of, local_now_iso, sku_key, utc_now_iso
from .warehouses import warehouse_code

logger = logging.getLogger("stockbot.outbound")


class OutboundOrchestrator:
    """Drives one outbound request from parsed quantity to ledger mutation."""

    def __init__(
        self,
        settings: Settings,
        stock: StockAggregator,
        ledger: LedgerGateway,
        guard: IdempotencyGuard,
        states: ConversationStateStore,
        selections: LastSelectionCache,
        messenger: LineMessenger,
        notifier: AuditNotifier,
        now_iso: Callable[[], str] = utc_now_iso,
    ) -> None:
        self._settings = settings
        self._stock = stock
        self._ledger = ledger
        self._guard = guard
        self._states = states
        self._selections = selections
        self._messenger = messenger
        self._notifier = notifier
        self._now_iso = now_iso

    async def request(self, turn: Turn, box: int, piece: int, warehouse_hint: Optional[str] = None) -> None:
        """Purpose: Handle a parsed outbound command for the turn's actor.
        Inputs/Outputs: Inputs are the turn, quantities and optional hint; no return.
        Side Effects / State: Records the pending quantity (latest wins), may
            prompt for a warehouse or perform the outbound.
        Dependencies: ConversationStateStore, LastSelectionCache, continue_with_sku.
        Failure Modes: ParseError for zero quantities; ResolutionError("sku") when no
            product is selected yet (the quantity stays pending as AWAIT_SKU).
        If Removed: Text outbound commands do nothing.
        Testing Notes: "出3箱" with no SKU context raises ResolutionError and makes
            no ledger call.
        """
        if box <= 0 and piece <= 0:
            raise ParseError("non_positive")
        actor = turn.actor_key
        self._states.begin_outbound(actor, box, piece, warehouse_hint)
        sku = self._selections.get_sku(actor)
        if not sku:
            raise ResolutionError("sku")
        await self.continue_with_sku(turn, sku, box, piece, warehouse_hint)

    async def continue_with_sku(
        self, turn: Turn, sku: str, box: int, piece: int, warehouse_hint: Optional[str] = None
    ) -> None:
        """Purpose: Resolve the warehouse for a pending outbound and proceed.
        Inputs/Outputs: Inputs are the turn, SKU, quantities and optional hint.
        Side Effects / State: Moves the actor to AWAIT_WAREHOUSE when a choice is
            needed; otherwise executes the outbound.
        Dependencies: StockAggregator.warehouses_for, resolve_warehouse, execute.
        Failure Modes: Errors from execute propagate; a failed stock read clears
            the pending dialog before propagating.
        If Removed: Pending quantities cannot be completed after choosing a SKU.
        Testing Notes: Two stocked warehouses and no last-used one -> prompt.
        """
        actor = turn.actor_key
        key = sku_key(sku)
        warehouses = await self._read_warehouses(actor, key)
        if not warehouses and not warehouse_hint:
            self._states.clear(actor)
            await self._messenger.reply_text(turn.event, NO_STOCK_ANYWHERE)
            return

        code = self.resolve_warehouse(actor, warehouse_hint, warehouses)
        if code is None:
            self._states.await_warehouse(actor, key, box, piece, [w.code for w in warehouses])
            await self._messenger.reply_text(
                turn.event, PICK_WAREHOUSE_FOR_OUT, outbound_quick_reply(key, box, piece, warehouses)
            )
            return
        await self.execute(turn, key, code, box, piece)

    async def _read_warehouses(self, actor: str, sku: str) -> List[WarehouseStock]:
        # A rejected outbound must not stay pending for the next product lookup.
        try:
            return await self._stock.warehouses_for(sku)
        except UpstreamError:
            self._states.clear(actor)
            raise

    def resolve_warehouse(
        self, actor_key: str, warehouse_hint: Optional[str], warehouses: List[WarehouseStock]
    ) -> Optional[str]:
        """Explicit hint > last-used (if still stocked) > sole candidate; None means ask."""
        if warehouse_hint:
            return warehouse_code(warehouse_hint)
        last = self._selections.get_warehouse(actor_key)
        if last and any(w.code == last for w in warehouses):
            return last
        if len(warehouses) == 1:
            return warehouses[0].code
        return None

    async def confirm(self, turn: Turn, sku: str, warehouse: Optional[str], box: int, piece: int) -> None:
        """Complete an outbound from a quick-reply tap or a warehouse pick."""
        key = sku_key(sku) or self._selections.get_sku(turn.actor_key)
        if not key:
            raise ResolutionError("sku")
        if box <= 0 and piece <= 0:
            raise ParseError("non_positive")
        await self.execute(turn, key, warehouse_code(warehouse), box, piece)

    async def pick_warehouse(self, turn: Turn, pending: ActorState, warehouse: Optional[str]) -> None:
        """Purpose: Complete an AWAIT_WAREHOUSE dialog from a typed warehouse name.
        Inputs/Outputs: Inputs are the turn, the pending state and the typed
            label or code; no return value.
        Side Effects / State: Re-prompts (refreshing the pending state) when the
            warehouse was not among the offered candidates; otherwise executes.
        Dependencies: StockAggregator.warehouses_for, confirm.
        Failure Modes: Errors from confirm propagate.
        If Removed: "倉 <x>" could ship from a warehouse that was never offered.
        Testing Notes: "倉 撤台" against candidates [main, swap] -> prompt again.
        """
        code = warehouse_code(warehouse)
        if pending.candidates and code not in pending.candidates:
            warehouses = await self._read_warehouses(turn.actor_key, pending.sku)
            self._states.await_warehouse(
                turn.actor_key, pending.sku, pending.box, pending.piece, [w.code for w in warehouses]
            )
            await self._messenger.reply_text(
                turn.event,
                PICK_WAREHOUSE_FOR_OUT,
                outbound_quick_reply(pending.sku, pending.box, pending.piece, warehouses),
            )
            return
        await self.confirm(turn, pending.sku, code, pending.box, pending.piece)

    async def execute(self, turn: Turn, sku: str, code: str, box: int, piece: int) -> None:
        """Purpose: Pre-check and perform one outbound mutation.
        Inputs/Outputs: Inputs are the turn, SKU, warehouse code and quantities;
            no return value.
        Side Effects / State: Takes the per-actor lock, calls the ledger, updates the
            last-used warehouse, clears the dialog, replies and pushes an audit event.
        Dependencies: IdempotencyGuard, StockAggregator, LedgerGateway, AuditNotifier.
        Failure Modes: OutboundBusyError when the lock is held;
            InsufficientStockError before any ledger call; LedgerError when the
            mutation fails; UpstreamError when the pre-check read fails. Each of
            these clears the pending dialog and leaves the selection untouched.
        If Removed: Nothing ever ships out.
        Testing Notes: box=3 against box=2 raises before the ledger is touched.
        """
        actor = turn.actor_key
        try:
            before = await self._stock.snapshot(sku, code)
        except UpstreamError:
            self._states.clear(actor)
            raise
        # Box and piece are checked independently; units never substitute.
        if box > before.box or piece > before.piece:
            self._states.clear(actor)
            raise InsufficientStockError(before, box, piece)

        if not self._guard.lock_outbound(actor):
            self._states.clear(actor)
            raise OutboundBusyError(actor)

        at_iso = self._now_iso()
        try:
            await self._ledger.outbound_and_log(
                group=self._settings.group_code,
                sku=sku,
                warehouse_code=code,
                out_box=box,
                out_piece=piece,
                at_iso=at_iso,
                created_by=turn.created_by,
            )
        except LedgerError as exc:
            logger.error(
                "fifo_out_and_log failed actor=%s sku=%s wh=%s box=%s piece=%s reason=%s",
                actor, sku, code, box, piece, exc.reason,
            )
            self._states.clear(actor)
            raise

        self._selections.set_sku(actor, sku)
        self._selections.set_warehouse(actor, code)
        self._states.clear(actor)
        logger.info(
            "outbound ok actor=%s sku=%s wh=%s box=%s piece=%s cmd=%r",
            actor, sku, code, box, piece, turn.command.normalized if turn.command else "",
        )

        try:
            after = await self._stock.snapshot(sku, code)
        except UpstreamError as exc:
            logger.warning("post-outbound snapshot failed sku=%s wh=%s err=%s", sku, code, exc)
            after = WarehouseStock(code=before.code, label=before.label, box=before.box - box, piece=before.piece - piece)

        await self._messenger.reply_text(turn.event, outbound_success_text(sku, box, piece, before, after))
        self._notifier.publish(self.audit_payload(sku, code, box, piece, after, at_iso, turn.created_by))

    def audit_payload(
        self, sku: str, code: str, box: int, piece: int, after: WarehouseStock, at_iso: str, created_by: str
    ) -> dict:
        settings = self._settings
        return {
            "type": "line_outbound",
            "group_code": settings.group_code,
            "product_sku": sku,
            "warehouse_code": code,
            "warehouse_name": after.label,
            "out_box": box,
            "out_piece": piece,
            "stock_box": after.box,
            "stock_piece": after.piece,
            "at": at_iso,
            "created_by": created_by,
            "tpe_time": local_now_iso(settings.biz_timezone),
            "biz_date_0500": business_date(settings.biz_day_cutover_hour, settings.biz_timezone),
            "bot_ver": settings.bot_version,
            "db_host": host_of(settings.supabase_url),
            "source": "LINE_OUTBOUND",
        }
