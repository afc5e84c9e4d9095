import pytest

from stockbot.errors import InsufficientStockError, LedgerError, OutboundBusyError, ParseError, ResolutionError
from stockbot.pipeline import Turn
from stockbot.state_store import AWAIT_SKU, AWAIT_WAREHOUSE


@pytest.mark.asyncio
async def test_request_without_sku_keeps_quantity_pending(bot, ledger, events):
    turn = Turn(event=events.text("出3箱"))
    with pytest.raises(ResolutionError) as info:
        await bot.orchestrator.request(turn, 3, 0)
    assert info.value.missing == "sku"
    assert ledger.outbound_calls == []
    state = bot.states.get("G1")
    assert (state.step, state.box) == (AWAIT_SKU, 3)


@pytest.mark.asyncio
async def test_zero_quantity_rejected(bot, events):
    with pytest.raises(ParseError):
        await bot.orchestrator.request(Turn(event=events.text("出0箱")), 0, 0)


@pytest.mark.asyncio
async def test_insufficient_box_rejected_before_ledger(bot, ledger, events):
    ledger.add_lot("a564", "main", "box", 2)
    ledger.add_lot("a564", "main", "piece", 50)
    bot.selections.set_sku("G1", "a564")
    with pytest.raises(InsufficientStockError) as info:
        await bot.orchestrator.request(Turn(event=events.text("出3箱")), 3, 0)
    assert info.value.snapshot.box == 2
    assert ledger.outbound_calls == []
    assert bot.states.get("G1") is None


@pytest.mark.asyncio
async def test_sole_warehouse_is_used(bot, ledger, messenger, notifier, events):
    ledger.add_lot("a564", "swap", "box", 4)
    bot.selections.set_sku("G1", "a564")
    await bot.orchestrator.request(Turn(event=events.text("出1箱")), 1, 0)
    (call,) = ledger.outbound_calls
    assert call["warehouse_code"] == "swap"
    assert call["created_by"] == "U1"
    assert call["group"] == "catch_0001"
    assert messenger.last["text"].startswith("✅ 出庫成功")
    assert "目前庫存：3箱0件" in messenger.last["text"]
    assert bot.selections.get_warehouse("G1") == "swap"
    (payload,) = notifier.payloads
    assert payload["type"] == "line_outbound"
    assert payload["stock_box"] == 3
    assert payload["source"] == "LINE_OUTBOUND"
    assert payload["created_by"] == "U1"


@pytest.mark.asyncio
async def test_multiple_warehouses_prompt_for_choice(bot, ledger, messenger, events):
    ledger.add_lot("a564", "main", "box", 4)
    ledger.add_lot("a564", "swap", "box", 1)
    bot.selections.set_sku("G1", "a564")
    await bot.orchestrator.request(Turn(event=events.text("出1箱")), 1, 0)
    assert ledger.outbound_calls == []
    state = bot.states.get("G1")
    assert state.step == AWAIT_WAREHOUSE
    assert sorted(state.candidates) == ["main", "swap"]
    items = messenger.last["quick_reply"]["items"]
    assert {item["action"]["data"] for item in items} == {
        "a=out&sku=a564&wh=main&box=1&piece=0",
        "a=out&sku=a564&wh=swap&box=1&piece=0",
    }


@pytest.mark.asyncio
async def test_last_used_warehouse_wins_when_still_stocked(bot, ledger, events):
    ledger.add_lot("a564", "main", "box", 4)
    ledger.add_lot("a564", "swap", "box", 1)
    bot.selections.set_sku("G1", "a564")
    bot.selections.set_warehouse("G1", "main")
    await bot.orchestrator.request(Turn(event=events.text("出1箱")), 1, 0)
    assert ledger.outbound_calls[0]["warehouse_code"] == "main"


@pytest.mark.asyncio
async def test_explicit_hint_overrides_last_used(bot, ledger, events):
    ledger.add_lot("a564", "main", "box", 4)
    ledger.add_lot("a564", "swap", "box", 1)
    bot.selections.set_sku("G1", "a564")
    bot.selections.set_warehouse("G1", "main")
    await bot.orchestrator.request(Turn(event=events.text("出1箱 @夾換品")), 1, 0, "夾換品")
    assert ledger.outbound_calls[0]["warehouse_code"] == "swap"


@pytest.mark.asyncio
async def test_no_stock_anywhere(bot, ledger, messenger, events):
    bot.selections.set_sku("G1", "a564")
    await bot.orchestrator.request(Turn(event=events.text("出1箱")), 1, 0)
    assert ledger.outbound_calls == []
    assert messenger.last["text"] == "所有倉庫皆無庫存，無法出庫"
    assert bot.states.get("G1") is None


@pytest.mark.asyncio
async def test_ledger_failure_leaves_selection_untouched(bot, ledger, events):
    ledger.add_lot("a564", "main", "box", 4)
    ledger.fail_with = LedgerError("庫存不足")
    bot.selections.set_sku("G1", "a564")
    bot.selections.set_warehouse("G1", "swap")
    with pytest.raises(LedgerError):
        await bot.orchestrator.confirm(Turn(event=events.postback("a=out")), "a564", "main", 1, 0)
    assert bot.selections.get_warehouse("G1") == "swap"
    assert bot.states.get("G1") is None


@pytest.mark.asyncio
async def test_second_outbound_inside_lock_window_is_busy(bot, ledger, clock, events):
    ledger.add_lot("a564", "main", "box", 4)
    await bot.orchestrator.confirm(Turn(event=events.postback("a=out")), "a564", "main", 1, 0)
    with pytest.raises(OutboundBusyError):
        await bot.orchestrator.confirm(Turn(event=events.postback("a=out")), "a564", "main", 1, 0)
    clock.advance(5)
    await bot.orchestrator.confirm(Turn(event=events.postback("a=out")), "a564", "main", 1, 0)
    assert len(ledger.outbound_calls) == 2
