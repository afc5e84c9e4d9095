from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import UpstreamError, UpstreamTimeout

logger = logging.getLogger("stockbot.ledger")


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamError(
            f"malformed JSON from {response.request.url.path}", status_code=response.status_code
        ) from exc


class SupabaseRest:
    """Thin async wrapper over the Supabase PostgREST endpoints."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout_sec: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Purpose: Configure the REST base URL, auth headers and HTTP client.
        Inputs/Outputs: Inputs are the project URL, service key, timeout and an
            optional pre-built client; no return value.
        Side Effects / State: Creates an httpx.AsyncClient when none is given.
        Dependencies: httpx.
        Failure Modes: None at init.
        If Removed: Ledger, catalog and dedup collaborators cannot be reached.
        Testing Notes: Pass an httpx.MockTransport-backed client.
        """
        # Every call is bounded by the client-level timeout.
        self.base_url = base_url.rstrip("/")
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def rpc(self, function: str, params: Dict[str, Any]) -> Any:
        """Call a Postgres function and return its decoded JSON result."""
        response = await self._request("POST", f"/rest/v1/rpc/{function}", json=params)
        if not response.content:
            return None
        return _decode_json(response)

    async def select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        """Read rows with PostgREST filter params (e.g. {"sku": "eq.a564"})."""
        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        data = _decode_json(response) if response.content else []
        return data if isinstance(data, list) else []

    async def insert(self, table: str, row: Dict[str, Any]) -> None:
        await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=row,
            headers={"Prefer": "return=minimal"},
        )

    async def _request(self, method: str, path: str, headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> httpx.Response:
        """Purpose: Issue one HTTP call and map failures to UpstreamError.
        Inputs/Outputs: Inputs are method, path, extra headers and httpx kwargs;
            output is a successful httpx.Response.
        Side Effects / State: Network I/O.
        Dependencies: httpx.AsyncClient.
        Failure Modes: Timeouts raise UpstreamTimeout; transport errors and non-2xx
            answers raise UpstreamError carrying status and PostgREST code.
        If Removed: Callers would have to interpret raw httpx exceptions.
        Testing Notes: 409 with {"code": "23505"} must surface code "23505".
        """
        merged = dict(self._headers)
        if headers:
            merged.update(headers)
        try:
            response = await self._client.request(method, f"{self.base_url}{path}", headers=merged, **kwargs)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(f"timeout calling {path}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"transport error calling {path}: {exc}") from exc

        if response.is_success:
            return response

        code: Optional[str] = None
        message = response.text[:300]
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = str(body.get("code")) if body.get("code") is not None else None
            message = str(body.get("message") or body.get("details") or message)
        logger.debug("path=%s status=%s code=%s message=%s", path, response.status_code, code, message)
        raise UpstreamError(message, status_code=response.status_code, code=code)
