import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

# Ensure project root is on sys.path to allow `import stockbot`.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from stockbot.config import Settings  # noqa: E402
from stockbot.conversation import InventoryAgent  # noqa: E402
from stockbot.errors import LedgerError  # noqa: E402
from stockbot.idempotency import IdempotencyGuard, OutboundLock  # noqa: E402
from stockbot.models import LineEvent, LotRecord, ProductInfo, StockListRow  # noqa: E402
from stockbot.orchestrator import OutboundOrchestrator  # noqa: E402
from stockbot.state_store import ConversationStateStore, LastSelectionCache  # noqa: E402
from stockbot.stock import StockAggregator  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLedger:
    """In-memory ledger: lots per SKU, FIFO-free deduction for tests."""

    def __init__(self) -> None:
        self.lots: List[LotRecord] = []
        self.list_rows: List[StockListRow] = []
        self.outbound_calls: List[Dict[str, Any]] = []
        self.list_reads = 0
        self.fail_with: Optional[Exception] = None

    def add_lot(self, sku, warehouse, uom, qty, cost=10.0, opened_at="2026-01-01T00:00:00+00:00") -> None:
        self.lots.append(LotRecord(sku, warehouse, uom, qty, cost, opened_at))

    async def business_day_stock(self, group: str, biz_date: str) -> List[StockListRow]:
        self.list_reads += 1
        return list(self.list_rows)

    async def open_lots(self, group: str, sku: Optional[str] = None) -> List[LotRecord]:
        return [lot for lot in self.lots if lot.remaining_qty > 0 and (sku is None or lot.sku == sku)]

    async def outbound_and_log(self, group, sku, warehouse_code, out_box, out_piece, at_iso, created_by):
        self.outbound_calls.append(
            {
                "group": group,
                "sku": sku,
                "warehouse_code": warehouse_code,
                "out_box": out_box,
                "out_piece": out_piece,
                "at_iso": at_iso,
                "created_by": created_by,
            }
        )
        if self.fail_with is not None:
            raise self.fail_with
        for uom, wanted in (("box", out_box), ("piece", out_piece)):
            for lot in self.lots:
                if wanted <= 0:
                    break
                if lot.sku == sku and lot.warehouse_code == warehouse_code and lot.uom == uom:
                    take = min(lot.remaining_qty, wanted)
                    lot.remaining_qty -= take
                    wanted -= take
            if wanted > 0:
                raise LedgerError("庫存不足")
        return {"ok": True}


class FakeCatalog:
    def __init__(self) -> None:
        self.products: Dict[str, ProductInfo] = {}
        self.barcodes: Dict[str, List[ProductInfo]] = {}

    async def lookup(self, sku: str) -> ProductInfo:
        return self.products.get(sku, ProductInfo(sku=sku, name=sku, units_per_box=1))

    async def lookup_barcode(self, barcode: str) -> List[ProductInfo]:
        return list(self.barcodes.get(barcode, []))


class FakeDedupStore:
    def __init__(self) -> None:
        self.seen = set()
        self.broken = False

    async def record(self, event_id: str, user_id: str, event_type: str) -> bool:
        from stockbot.errors import InfrastructureDegradation

        if self.broken:
            raise InfrastructureDegradation("dedup table unavailable")
        if event_id in self.seen:
            return False
        self.seen.add(event_id)
        return True


class FakeMessenger:
    def __init__(self) -> None:
        self.replies: List[Dict[str, Any]] = []

    async def reply_text(self, event, text, quick_reply=None) -> bool:
        self.replies.append({"actor": event.actor_key, "text": text, "quick_reply": quick_reply})
        return True

    @property
    def last(self) -> Dict[str, Any]:
        return self.replies[-1]


class FakeNotifier:
    def __init__(self) -> None:
        self.payloads: List[Dict[str, Any]] = []

    def publish(self, payload):
        self.payloads.append(payload)
        return None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        line_channel_secret="secret",
        line_channel_access_token="token",
        line_api_base="https://api.line.test",
        supabase_url="https://proj.supabase.test",
        supabase_service_key="service-key",
        group_code="catch_0001",
        gas_webhook_url="",
        gas_webhook_secret="",
        bot_version="TEST",
        http_timeout_sec=2.0,
        state_ttl_sec=30 * 60,
        outbound_lock_ttl_sec=5,
        stock_list_ttl_sec=3,
        product_cache_ttl_sec=300,
        biz_day_cutover_hour=5,
        biz_timezone="Asia/Taipei",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def dedup_store() -> FakeDedupStore:
    return FakeDedupStore()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def bot(settings, clock, ledger, catalog, dedup_store, messenger, notifier):
    """Fully wired agent over in-memory fakes, plus its stateful parts."""
    stock = StockAggregator(ledger, catalog, group=settings.group_code, biz_date=lambda: "2026-01-17", clock=clock)
    guard = IdempotencyGuard(dedup_store, OutboundLock(settings.outbound_lock_ttl_sec, clock=clock))
    states = ConversationStateStore(ttl_sec=settings.state_ttl_sec, clock=clock)
    selections = LastSelectionCache()
    orchestrator = OutboundOrchestrator(
        settings=settings,
        stock=stock,
        ledger=ledger,
        guard=guard,
        states=states,
        selections=selections,
        messenger=messenger,
        notifier=notifier,
        now_iso=lambda: "2026-01-17T02:00:00+00:00",
    )
    agent = InventoryAgent(
        settings=settings,
        guard=guard,
        stock=stock,
        catalog=catalog,
        states=states,
        selections=selections,
        orchestrator=orchestrator,
        messenger=messenger,
    )
    return SimpleNamespace(
        agent=agent, states=states, selections=selections, orchestrator=orchestrator, stock=stock, guard=guard
    )


class EventFactory:
    def __init__(self, group_id: str = "G1", user_id: str = "U1") -> None:
        self.group_id = group_id
        self.user_id = user_id
        self.counter = 0

    def _base(self, event_id: Optional[str]) -> Dict[str, Any]:
        self.counter += 1
        return {
            "replyToken": f"rt-{self.counter}",
            "webhookEventId": event_id or f"ev-{self.counter}",
            "source": {"type": "group", "groupId": self.group_id, "userId": self.user_id},
        }

    def text(self, text: str, event_id: Optional[str] = None) -> LineEvent:
        payload = self._base(event_id)
        payload.update({"type": "message", "message": {"type": "text", "id": "m1", "text": text}})
        return LineEvent(**payload)

    def postback(self, data: str, event_id: Optional[str] = None) -> LineEvent:
        payload = self._base(event_id)
        payload.update({"type": "postback", "postback": {"data": data}})
        return LineEvent(**payload)


@pytest.fixture
def events() -> EventFactory:
    return EventFactory()
