from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional

from .models import ActorState
from .utils import sku_key
from .warehouses import normalize_code

AWAIT_SKU = "AWAIT_SKU"
AWAIT_WAREHOUSE = "AWAIT_WAREHOUSE"

DEFAULT_STATE_TTL_SEC = 30 * 60


class ConversationStateStore:
    """Process-local per-actor dialog state with lazy TTL expiry.

    Any shared keyed cache with the same get/put/clear-with-TTL contract can
    replace this class for multi-instance deployments.
    """

    def __init__(self, ttl_sec: int = DEFAULT_STATE_TTL_SEC, clock: Callable[[], float] = time.time) -> None:
        """Purpose: Initialize an empty state table.
        Inputs/Outputs: Inputs are the TTL in seconds and a clock; no return.
        Side Effects / State: Creates the in-memory actor map.
        Dependencies: None.
        Failure Modes: None.
        If Removed: Multi-turn outbound dialogs cannot survive between messages.
        Testing Notes: Inject a fake clock to exercise expiry.
        """
        self._ttl_sec = ttl_sec
        self._clock = clock
        self._states: Dict[str, ActorState] = {}

    def get(self, actor_key: str) -> Optional[ActorState]:
        """Purpose: Return the live state for an actor, expiring it lazily.
        Inputs/Outputs: Input is actor_key; output is ActorState or None.
        Side Effects / State: Drops the entry when older than the TTL.
        Dependencies: Uses the injected clock.
        Failure Modes: None.
        If Removed: Pending quantities and prompts are never resumed.
        Testing Notes: A state written at T is absent at T + TTL + 1 minute.
        """
        # Expired states are removed on read rather than by a sweeper.
        state = self._states.get(actor_key)
        if state is None:
            return None
        if self._clock() - state.updated_at > self._ttl_sec:
            self._states.pop(actor_key, None)
            return None
        return state

    def begin_outbound(
        self, actor_key: str, box: int, piece: int, warehouse_hint: Optional[str] = None
    ) -> ActorState:
        """Purpose: Record a freshly parsed outbound quantity awaiting a SKU.
        Inputs/Outputs: Inputs are actor_key, quantities and optional hint; output is
            the new ActorState.
        Side Effects / State: Replaces any existing state (latest wins).
        Dependencies: None.
        Failure Modes: None.
        If Removed: "出3箱" before choosing a product cannot be completed later.
        Testing Notes: Two consecutive begins keep only the second quantity.
        """
        state = ActorState(
            step=AWAIT_SKU,
            box=box,
            piece=piece,
            warehouse_hint=warehouse_hint,
            updated_at=self._clock(),
        )
        self._states[actor_key] = state
        return state

    def await_warehouse(
        self, actor_key: str, sku: str, box: int, piece: int, candidates: List[str]
    ) -> ActorState:
        """Move an actor to AWAIT_WAREHOUSE with the resolved SKU and offered codes."""
        state = ActorState(
            step=AWAIT_WAREHOUSE,
            box=box,
            piece=piece,
            sku=sku_key(sku),
            updated_at=self._clock(),
            candidates=list(candidates),
        )
        self._states[actor_key] = state
        return state

    def clear(self, actor_key: str) -> bool:
        # Returns True when a live state was dropped.
        live = self.get(actor_key) is not None
        self._states.pop(actor_key, None)
        return live


class LastSelectionCache:
    """Best-effort memory of the last SKU and warehouse per actor.

    Lost on restart; users simply re-select.
    """

    def __init__(self) -> None:
        self._skus: Dict[str, str] = {}
        self._warehouses: Dict[str, str] = {}

    def set_sku(self, actor_key: str, sku: str) -> None:
        if not actor_key:
            return
        self._skus[actor_key] = sku_key(sku)

    def get_sku(self, actor_key: str) -> str:
        return sku_key(self._skus.get(actor_key, ""))

    def set_warehouse(self, actor_key: str, code: str) -> None:
        if not actor_key:
            return
        self._warehouses[actor_key] = normalize_code(code)

    def get_warehouse(self, actor_key: str) -> str:
        return self._warehouses.get(actor_key, "")
