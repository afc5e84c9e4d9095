from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set
from urllib.parse import quote

import httpx

logger = logging.getLogger("stockbot.notify")


def build_call_url(base_url: str, secret: str) -> Optional[str]:
    # Any existing query string on the base URL is replaced by the secret.
    base = str(base_url or "").strip()
    token = str(secret or "").strip()
    if not base or not token:
        return None
    clean = base.split("?", 1)[0]
    return f"{clean}?secret={quote(token, safe='')}"


class AuditNotifier:
    """Best-effort, fire-and-forget push of outbound audit events."""

    def __init__(
        self,
        base_url: str,
        secret: str,
        timeout_sec: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.call_url = build_call_url(base_url, secret)
        self._timeout_sec = timeout_sec
        self._client = client
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self.call_url is not None

    def publish(self, payload: Dict[str, Any]) -> Optional[asyncio.Task]:
        """Purpose: Schedule an audit push without awaiting it.
        Inputs/Outputs: Input is a JSON-serializable payload; output is the detached
            task (None when the sink is not configured).
        Side Effects / State: Creates an asyncio task kept until it finishes.
        Dependencies: Must be called from a running event loop.
        Failure Modes: None propagate; failures are logged by _post.
        If Removed: Outbound events are not mirrored to the audit sheet.
        Testing Notes: Await the returned task to observe the POST.
        """
        if not self.enabled:
            return None
        task = asyncio.create_task(self._post(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _post(self, payload: Dict[str, Any]) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(self.call_url, json=payload, timeout=self._timeout_sec)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_sec) as client:
                    response = await client.post(self.call_url, json=payload)
            if response.status_code >= 400:
                logger.warning("audit push status=%s body=%s", response.status_code, response.text[:300])
        except httpx.HTTPError as exc:
            logger.warning("audit push failed err=%s", exc)
