"""Ledger collaborator: live lot reads and the authoritative outbound mutation.

The ledger owns FIFO consumption and must re-validate sufficiency inside
fifo_out_and_log; nothing here assumes shared atomicity with it.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from .errors import LedgerError, LedgerTimeoutError, UpstreamError, UpstreamTimeout
from .models import LotRecord, StockListRow
from .supabase_rest import SupabaseRest
from .utils import pick_num, sku_key
from .warehouses import normalize_code

logger = logging.getLogger("stockbot.ledger")

LOTS_TABLE = "stock_lots"
LOT_COLUMNS = "product_sku,warehouse_code,uom,remaining_qty,unit_cost,opened_at"


class LedgerGateway:
    """Capability interface {read live stock, mutate outbound} over Supabase RPCs."""

    def __init__(self, rest: SupabaseRest) -> None:
        self._rest = rest

    async def business_day_stock(self, group: str, biz_date: str) -> List[StockListRow]:
        """Purpose: Read the legacy per-business-day stock rollup.
        Inputs/Outputs: Inputs are group code and business date; output is a list of
            StockListRow with name, warehouse and quantities.
        Side Effects / State: Network I/O.
        Dependencies: RPC get_business_day_stock.
        Failure Modes: UpstreamError/UpstreamTimeout propagate.
        If Removed: Keyword search has no candidate list.
        Testing Notes: Rows with Chinese column aliases must be read too.
        """
        # Only used for keyword search listing, never for sufficiency checks.
        data = await self._rest.rpc("get_business_day_stock", {"p_group": group, "p_biz_date": biz_date})
        rows = data if isinstance(data, list) else []
        result: List[StockListRow] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            sku = sku_key(row.get("product_sku") or row.get("貨品編號"))
            if not sku:
                continue
            result.append(
                StockListRow(
                    sku=sku,
                    name=str(row.get("product_name") or row.get("貨品名稱") or "").strip(),
                    warehouse_code=normalize_code(row.get("warehouse_code")),
                    box=pick_num(row.get("box", row.get("庫存箱數"))),
                    piece=pick_num(row.get("piece", row.get("庫存散數"))),
                )
            )
        return result

    async def open_lots(self, group: str, sku: Optional[str] = None) -> List[LotRecord]:
        """Purpose: Read lot-level rows that still carry remaining stock.
        Inputs/Outputs: Inputs are group code and optional SKU; output is LotRecord list.
        Side Effects / State: Network I/O.
        Dependencies: Table stock_lots.
        Failure Modes: UpstreamError/UpstreamTimeout propagate.
        If Removed: Live stock cannot be computed.
        Testing Notes: Lots with unknown uom are skipped.
        """
        params = {
            "select": LOT_COLUMNS,
            "group_code": f"eq.{group}",
            "remaining_qty": "gt.0",
            "order": "opened_at.asc",
        }
        if sku:
            params["product_sku"] = f"eq.{sku_key(sku)}"
        rows = await self._rest.select(LOTS_TABLE, params)
        lots: List[LotRecord] = []
        for row in rows:
            uom = str(row.get("uom") or "").strip().lower()
            if uom not in ("box", "piece"):
                logger.warning("skip lot with unknown uom=%r sku=%s", uom, row.get("product_sku"))
                continue
            lots.append(
                LotRecord(
                    sku=sku_key(row.get("product_sku")),
                    warehouse_code=normalize_code(row.get("warehouse_code")),
                    uom=uom,
                    remaining_qty=pick_num(row.get("remaining_qty")),
                    unit_cost=pick_num(row.get("unit_cost")),
                    opened_at=str(row.get("opened_at") or ""),
                )
            )
        return lots

    async def outbound_and_log(
        self,
        group: str,
        sku: str,
        warehouse_code: str,
        out_box: int,
        out_piece: int,
        at_iso: str,
        created_by: str,
    ) -> Any:
        """Purpose: Perform the atomic FIFO outbound and audit log in the ledger.
        Inputs/Outputs: Inputs are the mutation arguments; output is the RPC result.
        Side Effects / State: Mutates the authoritative ledger.
        Dependencies: RPC fifo_out_and_log.
        Failure Modes: LedgerTimeoutError on timeout (outcome unknown); LedgerError
            with the upstream reason otherwise.
        If Removed: No stock can be shipped out.
        Testing Notes: Map a 400 {"message": "庫存不足"} to LedgerError("庫存不足").
        """
        try:
            return await self._rest.rpc(
                "fifo_out_and_log",
                {
                    "p_group": group,
                    "p_product_sku": sku_key(sku),
                    "p_warehouse_name": warehouse_code,
                    "p_out_box": out_box,
                    "p_out_piece": out_piece,
                    "p_at": at_iso,
                    "p_created_by": created_by,
                },
            )
        except UpstreamTimeout as exc:
            raise LedgerTimeoutError(exc.message) from exc
        except UpstreamError as exc:
            raise LedgerError(exc.message) from exc
