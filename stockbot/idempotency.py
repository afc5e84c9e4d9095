from __future__ import annotations

import logging
import time
from typing import Callable, Dict

from .errors import InfrastructureDegradation, UpstreamError
from .models import LineEvent
from .supabase_rest import SupabaseRest

logger = logging.getLogger("stockbot.dedup")

DEDUP_TABLE = "line_event_dedup"
UNIQUE_VIOLATION = "23505"


class DedupStore:
    """Durable insert-once record of processed event ids."""

    def __init__(self, rest: SupabaseRest, group: str) -> None:
        self._rest = rest
        self._group = group

    async def record(self, event_id: str, user_id: str, event_type: str) -> bool:
        """Purpose: Insert an event id if absent.
        Inputs/Outputs: Inputs are event id, LINE user id and event type; output is
            True for a first sighting, False for a duplicate.
        Side Effects / State: Writes one row to line_event_dedup.
        Dependencies: SupabaseRest.insert; uniqueness is enforced by the table.
        Failure Modes: Any failure other than a uniqueness conflict raises
            InfrastructureDegradation.
        If Removed: Redelivered webhooks repeat outbound mutations.
        Testing Notes: A 409/23505 answer maps to False.
        """
        try:
            await self._rest.insert(
                DEDUP_TABLE,
                {
                    "event_id": event_id,
                    "group_code": self._group,
                    "line_user_id": user_id or None,
                    "event_type": event_type or None,
                },
            )
        except UpstreamError as exc:
            if exc.code == UNIQUE_VIOLATION or exc.status_code == 409:
                return False
            raise InfrastructureDegradation(str(exc)) from exc
        return True


class OutboundLock:
    """Short-lived per-actor mutual exclusion for outbound mutations.

    Released only by expiry, so a crashed handler never leaves a stuck lock.
    """

    def __init__(self, ttl_sec: float = 5, clock: Callable[[], float] = time.time) -> None:
        self._ttl_sec = ttl_sec
        self._clock = clock
        self._expiry: Dict[str, float] = {}

    def try_acquire(self, actor_key: str) -> bool:
        now = self._clock()
        expires_at = self._expiry.get(actor_key)
        if expires_at is not None and expires_at > now:
            return False
        self._expiry[actor_key] = now + self._ttl_sec
        # Drop stale entries so the map does not grow without bound.
        for key in [k for k, v in self._expiry.items() if v <= now]:
            del self._expiry[key]
        return True


class IdempotencyGuard:
    """Durable event dedup plus the outbound race lock."""

    def __init__(self, store: DedupStore, lock: OutboundLock) -> None:
        self._store = store
        self._lock = lock

    async def admit(self, event: LineEvent) -> bool:
        """Purpose: Decide whether an inbound event should be processed.
        Inputs/Outputs: Input is a LineEvent; output is True to process, False to drop.
        Side Effects / State: Records the event id durably.
        Dependencies: DedupStore.record.
        Failure Modes: Store outages fail open (returns True) with a warning.
        If Removed: At-least-once delivery turns into repeated replies and mutations.
        Testing Notes: Same id twice -> True then False; store outage -> True.
        """
        # Events without an id cannot be deduplicated and are let through.
        event_id = event.event_id
        if not event_id:
            return True
        try:
            first = await self._store.record(event_id, event.source.user_id or "", event.type)
        except InfrastructureDegradation as exc:
            logger.warning("dedup insert failed, allow continue event_id=%s err=%s", event_id, exc)
            return True
        if not first:
            logger.info("duplicated event_id=%s skip", event_id)
        return first

    def lock_outbound(self, actor_key: str) -> bool:
        acquired = self._lock.try_acquire(actor_key)
        if not acquired:
            logger.info("outbound lock held actor=%s", actor_key)
        return acquired
