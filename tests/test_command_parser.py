import pytest

from stockbot.command_parser import parse_command, parse_out_command, split_warehouse_hint
from stockbot.errors import ParseError


@pytest.mark.parametrize(
    "text,box,piece",
    [
        ("出3箱2件", 3, 2),
        ("出2件3箱", 3, 2),
        ("出庫 3箱 2件", 3, 2),
        ("出1箱1箱", 2, 0),
        ("出2pcs 1個", 0, 3),
        ("出1散", 0, 1),
        ("出5", 0, 5),
        ("出2件3", 0, 5),
        ("出3箱，2件", 3, 2),
    ],
)
def test_parse_out_command_accumulates_per_unit_class(text, box, piece):
    command = parse_out_command(text)
    assert command.kind == "outbound"
    assert (command.box, command.piece) == (box, piece)


def test_box_and_piece_never_convert():
    command = parse_out_command("出0箱12件")
    assert (command.box, command.piece) == (0, 12)


@pytest.mark.parametrize(
    "text,code",
    [
        ("", "empty"),
        ("入3箱", "no_prefix"),
        ("出", "no_amount"),
        ("出去吃飯", "no_tokens"),
        ("出3箱2件給我", "has_extra_text"),
        ("出3箱5", "has_extra_text"),
        ("出0箱", "non_positive"),
        ("出3件a", "has_extra_text"),
        ("出2箱x", "has_extra_text"),
    ],
)
def test_parse_out_command_errors(text, code):
    with pytest.raises(ParseError) as info:
        parse_out_command(text)
    assert info.value.code == code


def test_warehouse_suffix_forms():
    assert split_warehouse_hint("3箱 @總倉") == ("3箱", "總倉")
    assert split_warehouse_hint("3箱(倉庫:main)")[1] == "main"
    assert split_warehouse_hint("3箱 倉庫=swap")[1] == "swap"
    assert split_warehouse_hint("3箱") == ("3箱", None)


def test_outbound_with_hint_has_canonical_text():
    command = parse_out_command("出3箱 2件 @總倉")
    assert command.warehouse == "總倉"
    assert command.normalized == "出 3箱 2件 @總倉"


@pytest.mark.parametrize(
    "text,kind",
    [
        ("db", "version"),
        ("版本", "version"),
        ("取消", "cancel"),
        ("Cancel", "cancel"),
        ("倉 總倉", "warehouse"),
        ("條碼 4710001", "barcode"),
        ("#A564", "sku"),
        ("編號 a564", "sku"),
        ("編號：a564", "sku"),
        ("查 巧克力", "query"),
        ("查詢 巧克力", "query"),
        ("出3箱", "outbound"),
    ],
)
def test_parse_command_dispatch(text, kind):
    assert parse_command(text).kind == kind


def test_parse_command_extracts_fields():
    assert parse_command("編號 A564").sku == "a564"
    assert parse_command("倉 夾換品").warehouse == "夾換品"
    assert parse_command("條碼:4710001").barcode == "4710001"
    assert parse_command("查詢 巧克力").keyword == "巧克力"


def test_ordinary_chat_is_not_a_command():
    assert parse_command("大家早安") is None
    assert parse_command("出去吃飯") is None
    assert parse_command("") is None


def test_malformed_outbound_raises_for_hint():
    with pytest.raises(ParseError):
        parse_command("出3箱2件給我")
