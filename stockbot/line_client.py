from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import TransportError
from .models import LineEvent

logger = logging.getLogger("stockbot.line")


def verify_signature(channel_secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Check the x-line-signature header (base64 HMAC-SHA256 of the raw body)."""
    if not signature:
        return False
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature)


def text_message(text: str, quick_reply: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"type": "text", "text": text}
    if quick_reply:
        message["quickReply"] = quick_reply
    return message


class LineMessenger:
    """Reply channel bound to inbound events, with one push fallback."""

    def __init__(
        self,
        access_token: str,
        api_base: str = "https://api.line.me",
        timeout_sec: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_base = api_base.rstrip("/")
        self._headers = {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def reply_text(
        self, event: LineEvent, text: str, quick_reply: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Purpose: Answer an event, falling back to a push on reply failure.
        Inputs/Outputs: Inputs are the event, text and optional quick reply; output is
            True when either channel delivered.
        Side Effects / State: One or two LINE API calls.
        Dependencies: LINE Messaging API reply and push endpoints.
        Failure Modes: Never raises; a double failure is logged and dropped.
        If Removed: The bot cannot talk back.
        Testing Notes: Reply 400 then push 200 -> True with two calls.
        """
        message = text_message(text, quick_reply)
        try:
            if not event.reply_token:
                raise TransportError("missing reply token")
            await self._post("/v2/bot/message/reply", {"replyToken": event.reply_token, "messages": [message]})
            return True
        except TransportError as exc:
            logger.error("reply failed actor=%s err=%s", event.actor_key, exc)

        # Push goes to the conversation address; quick replies are kept.
        address = event.source.group_id or event.source.room_id or event.source.user_id
        if not address:
            return False
        try:
            await self._post("/v2/bot/message/push", {"to": address, "messages": [message]})
            return True
        except TransportError as exc:
            logger.error("push failed actor=%s err=%s", event.actor_key, exc)
            return False

    async def _post(self, path: str, body: Dict[str, Any]) -> None:
        try:
            response = await self._client.post(f"{self._api_base}{path}", json=body, headers=self._headers)
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        if response.status_code >= 400:
            raise TransportError(f"status={response.status_code} body={response.text[:200]}")
