from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Tuple

from .errors import UpstreamError
from .models import ProductInfo
from .supabase_rest import SupabaseRest
from .utils import pick_num, sku_key

logger = logging.getLogger("stockbot.catalog")

PRODUCTS_TABLE = "products"
BARCODE_MATCH_LIMIT = 10


class ProductCatalog:
    """Product-master and barcode lookups with a short local cache."""

    def __init__(
        self,
        rest: SupabaseRest,
        ttl_sec: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._rest = rest
        self._ttl_sec = ttl_sec
        self._clock = clock
        self._cache: Dict[str, Tuple[float, ProductInfo]] = {}

    async def lookup(self, sku: str) -> ProductInfo:
        """Purpose: Resolve display name and units-per-box for a SKU.
        Inputs/Outputs: Input is a SKU; output is ProductInfo.
        Side Effects / State: Caches results for ttl_sec.
        Dependencies: Table products via SupabaseRest.select.
        Failure Modes: Upstream errors degrade to (name=sku, units_per_box=1)
            with a warning; the degraded value is not cached.
        If Removed: Valuation of box lots and product names in replies are lost.
        Testing Notes: Second lookup within TTL must not hit the REST layer.
        """
        key = sku_key(sku)
        cached = self._cache.get(key)
        now = self._clock()
        if cached and now - cached[0] < self._ttl_sec:
            return cached[1]

        try:
            rows = await self._rest.select(
                PRODUCTS_TABLE,
                {"select": "product_sku,product_name,units_per_box", "product_sku": f"eq.{key}", "limit": "1"},
            )
        except UpstreamError as exc:
            logger.warning("product lookup failed sku=%s err=%s", key, exc)
            return ProductInfo(sku=key, name=key, units_per_box=1)

        if rows:
            row = rows[0]
            units = pick_num(row.get("units_per_box"), 1) or 1
            info = ProductInfo(sku=key, name=str(row.get("product_name") or key).strip(), units_per_box=units)
        else:
            info = ProductInfo(sku=key, name=key, units_per_box=1)
        self._cache[key] = (now, info)
        return info

    async def lookup_barcode(self, barcode: str) -> List[ProductInfo]:
        """Return every product carrying the barcode (at most 10)."""
        code = str(barcode or "").strip()
        if not code:
            return []
        rows = await self._rest.select(
            PRODUCTS_TABLE,
            {"select": "product_sku,product_name", "barcode": f"eq.{code}", "limit": str(BARCODE_MATCH_LIMIT)},
        )
        products = []
        for row in rows:
            key = sku_key(row.get("product_sku"))
            if key:
                products.append(ProductInfo(sku=key, name=str(row.get("product_name") or "").strip()))
        return products
