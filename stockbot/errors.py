"""Error taxonomy for the inventory chat agent.

User-facing errors (ParseError, ResolutionError, InsufficientStockError,
LedgerError) end the current turn with a corrective reply. Infrastructure
errors (TransportError, InfrastructureDegradation, UpstreamError) are caught at
their component boundary and logged; they never abort the primary flow.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import WarehouseStock


class StockBotError(Exception):
    """Base class for every error raised by the agent."""


class ParseError(StockBotError):
    """Malformed or ambiguous chat command."""

    def __init__(self, code: str, normalized: str = "") -> None:
        super().__init__(code)
        self.code = code
        self.normalized = normalized


class ResolutionError(StockBotError):
    """Missing SKU or warehouse context for the requested action."""

    def __init__(self, missing: str) -> None:
        super().__init__(f"missing {missing}")
        self.missing = missing


class InsufficientStockError(StockBotError):
    """Outbound pre-check failed; no mutation was attempted."""

    def __init__(self, snapshot: "WarehouseStock", box: int, piece: int) -> None:
        super().__init__(
            f"requested {box} box / {piece} piece, available {snapshot.box} box / {snapshot.piece} piece"
        )
        self.snapshot = snapshot
        self.box = box
        self.piece = piece


class OutboundBusyError(StockBotError):
    """Another outbound for the same actor is still inside its lock window."""


class UpstreamError(StockBotError):
    """Non-success answer from an HTTP collaborator."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class UpstreamTimeout(UpstreamError):
    """HTTP collaborator did not answer within the configured timeout."""


class LedgerError(StockBotError):
    """The ledger mutation failed; the reason is human readable."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class LedgerTimeoutError(LedgerError):
    """The ledger mutation timed out; its outcome is unknown."""


class TransportError(StockBotError):
    """Reply delivery failed on both the reply and the push channel."""


class InfrastructureDegradation(StockBotError):
    """An auxiliary store or sink failed; callers fail open."""
