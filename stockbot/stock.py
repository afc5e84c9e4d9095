"""Live stock aggregation and valuation from lot-level ledger records.

Snapshots are always recomputed from open lots rather than from the daily
rollup, which drifts under concurrent mutation. The only cache here fronts the
business-day list used for keyword search; sufficiency checks never read it.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .catalog import ProductCatalog
from .ledger import LedgerGateway
from .models import LotRecord, ProductInfo, StockListRow, WarehouseStock
from .utils import sku_key
from .warehouses import normalize_code, warehouse_label

logger = logging.getLogger("stockbot.stock")

SEARCH_RESULT_LIMIT = 10


def display_unit_cost(lots: Iterable[LotRecord]) -> Optional[float]:
    """Purpose: Choose the per-piece cost shown to staff for one warehouse.
    Inputs/Outputs: Input is the warehouse's lots; output is a cost or None.
    Side Effects / State: None.
    Dependencies: LotRecord.opened_at ordering (ISO timestamps).
    Failure Modes: None; returns None when no lot has remaining stock.
    If Removed: Snapshots show no unit cost.
    Testing Notes: Newest piece lot wins over a newer box lot.
    """
    # Newest piece lot first, newest box lot as fallback.
    stocked = [lot for lot in lots if lot.remaining_qty > 0]
    for uom in ("piece", "box"):
        candidates = [lot for lot in stocked if lot.uom == uom]
        if candidates:
            return max(candidates, key=lambda lot: lot.opened_at).unit_cost
    return None


def aggregate_lots(lots: Iterable[LotRecord], units_per_box: float = 1) -> List[WarehouseStock]:
    """Purpose: Sum open lots of one SKU into per-warehouse snapshots.
    Inputs/Outputs: Inputs are the SKU's lots and its units-per-box; output is a
        list of WarehouseStock for every warehouse with nonzero stock.
    Side Effects / State: None; pure function.
    Dependencies: warehouse_label, display_unit_cost.
    Failure Modes: None.
    If Removed: No live stock, no sufficiency check.
    Testing Notes: Box lots are valued as remaining * units_per_box * unit_cost;
        box and piece quantities never mix.
    """
    grouped: "OrderedDict[str, List[LotRecord]]" = OrderedDict()
    for lot in lots:
        if lot.remaining_qty <= 0:
            continue
        grouped.setdefault(normalize_code(lot.warehouse_code), []).append(lot)

    snapshots: List[WarehouseStock] = []
    for code, wh_lots in grouped.items():
        box = 0.0
        piece = 0.0
        amount = 0.0
        for lot in wh_lots:
            if lot.uom == "box":
                box += lot.remaining_qty
                amount += lot.remaining_qty * units_per_box * lot.unit_cost
            else:
                piece += lot.remaining_qty
                amount += lot.remaining_qty * lot.unit_cost
        snapshot = WarehouseStock(
            code=code,
            label=warehouse_label(code),
            box=_whole(box),
            piece=_whole(piece),
            amount=round(amount, 2),
            unit_cost=display_unit_cost(wh_lots),
        )
        if snapshot.is_stocked:
            snapshots.append(snapshot)
    return snapshots


def _whole(value: float) -> float:
    return int(value) if float(value).is_integer() else value


class StockAggregator:
    """Computes live per-warehouse stock for SKUs and serves keyword search."""

    def __init__(
        self,
        ledger: LedgerGateway,
        catalog: ProductCatalog,
        group: str,
        biz_date: Callable[[], str],
        list_ttl_sec: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._catalog = catalog
        self._group = group
        self._biz_date = biz_date
        self._list_ttl_sec = list_ttl_sec
        self._clock = clock
        self._list_cache: Dict[str, Tuple[float, List[StockListRow]]] = {}

    async def warehouses_for(self, sku: str) -> List[WarehouseStock]:
        """Purpose: Live per-warehouse stock for one SKU, recomputed on every call.
        Inputs/Outputs: Input is a SKU; output is stocked WarehouseStock list.
        Side Effects / State: Reads lots and the product master.
        Dependencies: LedgerGateway.open_lots, ProductCatalog.lookup.
        Failure Modes: Ledger read errors propagate.
        If Removed: SKU flow and outbound resolution have no candidates.
        Testing Notes: Lots of other SKUs returned by the reader are ignored.
        """
        key = sku_key(sku)
        lots = [lot for lot in await self._ledger.open_lots(self._group, key) if lot.sku == key]
        product = await self._catalog.lookup(key)
        return aggregate_lots(lots, product.units_per_box)

    async def snapshot(self, sku: str, code: str) -> WarehouseStock:
        """Fresh snapshot for (sku, warehouse); zero quantities when not stocked."""
        wanted = normalize_code(code)
        for item in await self.warehouses_for(sku):
            if item.code == wanted:
                return item
        return WarehouseStock(code=wanted, label=warehouse_label(wanted))

    async def stock_list(self) -> List[StockListRow]:
        """Purpose: Business-day stock list for keyword search, briefly cached.
        Inputs/Outputs: No inputs; output is stocked StockListRow list.
        Side Effects / State: Caches per (group, business day) for list_ttl_sec.
        Dependencies: LedgerGateway.business_day_stock.
        Failure Modes: Ledger read errors propagate and are not cached.
        If Removed: Every search hits the ledger.
        Testing Notes: Two calls inside the TTL read the ledger once.
        """
        biz_date = self._biz_date()
        cache_key = f"{self._group}::{biz_date}"
        cached = self._list_cache.get(cache_key)
        now = self._clock()
        if cached and now - cached[0] < self._list_ttl_sec:
            return cached[1]
        rows = await self._ledger.business_day_stock(self._group, biz_date)
        kept = [row for row in rows if row.box > 0 or row.piece > 0]
        self._list_cache = {cache_key: (now, kept)}
        return kept

    async def search(self, keyword: str, limit: int = SEARCH_RESULT_LIMIT) -> List[ProductInfo]:
        """Distinct stocked SKUs whose code or name contains the keyword."""
        needle = str(keyword or "").strip().lower()
        if not needle:
            return []
        seen = set()
        found: List[ProductInfo] = []
        for row in await self.stock_list():
            if row.sku in seen:
                continue
            if needle in row.sku.lower() or needle in row.name.lower():
                seen.add(row.sku)
                found.append(ProductInfo(sku=row.sku, name=row.name or row.sku))
                if len(found) >= limit:
                    break
        return found
