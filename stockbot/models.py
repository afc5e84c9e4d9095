from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventSource(BaseModel):
    """Conversation address of an inbound LINE event."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = "user"
    user_id: Optional[str] = Field(default=None, alias="userId")
    group_id: Optional[str] = Field(default=None, alias="groupId")
    room_id: Optional[str] = Field(default=None, alias="roomId")


class TextMessage(BaseModel):
    """Message body; only text messages are routed."""
    model_config = ConfigDict(extra="ignore")

    type: str
    id: Optional[str] = None
    text: Optional[str] = None


class PostbackData(BaseModel):
    """Payload of an interactive tap."""
    model_config = ConfigDict(extra="ignore")

    data: str = ""


class DeliveryContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_redelivery: bool = Field(default=False, alias="isRedelivery")
    event_id: Optional[str] = Field(default=None, alias="eventId")


class LineEvent(BaseModel):
    """Inbound webhook event (message or postback)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    source: EventSource = Field(default_factory=EventSource)
    message: Optional[TextMessage] = None
    postback: Optional[PostbackData] = None
    reply_token: Optional[str] = Field(default=None, alias="replyToken")
    webhook_event_id: Optional[str] = Field(default=None, alias="webhookEventId")
    event_id_field: Optional[str] = Field(default=None, alias="eventId")
    delivery_context: Optional[DeliveryContext] = Field(default=None, alias="deliveryContext")

    @property
    def event_id(self) -> str:
        """Unique delivery id, preferring webhookEventId."""
        if self.webhook_event_id:
            return self.webhook_event_id.strip()
        if self.delivery_context and self.delivery_context.event_id:
            return self.delivery_context.event_id.strip()
        return (self.event_id_field or "").strip()

    @property
    def actor_key(self) -> str:
        """Conversation identity keying all per-conversation state."""
        src = self.source
        return src.group_id or src.room_id or src.user_id or "unknown"

    @property
    def created_by(self) -> str:
        """Person credited for ledger mutations."""
        src = self.source
        return src.user_id or src.group_id or src.room_id or "line"


class WebhookBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    destination: Optional[str] = None
    events: List[Dict[str, Any]] = Field(default_factory=list)


@dataclass
class ParsedCommand:
    """Tagged intent produced by the command parser or the postback decoder.

    kind is one of: version, cancel, barcode, sku, warehouse, query, outbound,
    warehouse_confirm, outbound_confirm.
    """
    kind: str
    sku: str = ""
    barcode: str = ""
    keyword: str = ""
    warehouse: Optional[str] = None
    box: int = 0
    piece: int = 0
    normalized: str = ""


@dataclass
class LotRecord:
    """One open stock batch as read from the ledger."""
    sku: str
    warehouse_code: str
    uom: str
    remaining_qty: float
    unit_cost: float
    opened_at: str = ""


@dataclass
class ProductInfo:
    sku: str
    name: str
    units_per_box: float = 1


@dataclass
class WarehouseStock:
    """Derived per-warehouse stock snapshot for one SKU; never persisted."""
    code: str
    label: str
    box: float = 0
    piece: float = 0
    amount: float = 0.0
    unit_cost: Optional[float] = None

    @property
    def is_stocked(self) -> bool:
        return self.box > 0 or self.piece > 0


@dataclass
class StockListRow:
    """Row of the business-day stock list used for keyword search."""
    sku: str
    name: str
    warehouse_code: str = "unspecified"
    box: float = 0
    piece: float = 0


@dataclass
class ActorState:
    """Pending multi-step outbound dialog for one actor."""
    step: str
    box: int = 0
    piece: int = 0
    sku: str = ""
    warehouse_hint: Optional[str] = None
    updated_at: float = 0.0
    candidates: List[str] = field(default_factory=list)

