"""Chat command grammar for the inventory bot.

Two layers:
    Prefix dispatch:
        COMMAND_RULES is an ordered table of (name, pattern, builder). The first
        pattern that matches the normalized text decides the intent; order is the
        priority (version, cancel, warehouse, barcode, sku, query, outbound).
    Outbound token scan:
        The outbound rule scans "<integer><unit>" tokens and accumulates them per
        unit class. Box and piece classes never convert into each other. The
        whole remainder must be quantity tokens plus an optional warehouse
        suffix, so ordinary prose that happens to start with "出" is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .errors import ParseError
from .models import ParsedCommand
from .utils import normalize_text, sku_key
from .warehouses import warehouse_label

BOX_UNITS = frozenset({"箱"})
PIECE_UNITS = frozenset({"件", "散", "個", "pcs", "pc"})

OUT_PREFIX_RE = re.compile(r"^(出庫|出)\s*(.*)$")
QUANTITY_TOKEN_RE = re.compile(r"(\d+)\s*(箱|件|散|個|pcs(?![a-z])|pc(?![a-z]))", re.IGNORECASE)
TAIL_INT_RE = re.compile(r"(?<!\d)(\d+)\s*$")
AT_SUFFIX_RE = re.compile(r"\s*@\s*([^@]+?)\s*$")
LABELLED_SUFFIX_RE = re.compile(r"\s*[（(]?\s*倉庫?\s*[:：=]\s*([^()（）]+?)\s*[)）]?\s*$")

CANCEL_WORDS = ("取消", "cancel")


@dataclass(frozen=True)
class CommandRule:
    """One row of the prefix dispatch table."""
    name: str
    pattern: re.Pattern
    build: Callable[[re.Match, str], Optional[ParsedCommand]]


def split_warehouse_hint(rest: str) -> Tuple[str, Optional[str]]:
    """Purpose: Detach an optional warehouse suffix from an outbound remainder.
    Inputs/Outputs: Input is the text after the outbound prefix; output is
        (remainder_without_suffix, hint or None).
    Side Effects / State: None.
    Dependencies: Uses AT_SUFFIX_RE and LABELLED_SUFFIX_RE.
    Failure Modes: None; text without a suffix is returned unchanged.
    If Removed: "出3箱 @總倉" fails with an extra-text error.
    Testing Notes: "@總倉", "(倉庫:main)", "倉庫=swap" and no suffix.
    """
    # The "@" form is checked first since labels never contain "@".
    for pattern in (AT_SUFFIX_RE, LABELLED_SUFFIX_RE):
        match = pattern.search(rest)
        if match and match.group(1).strip():
            return rest[: match.start()], match.group(1).strip()
    return rest, None


def scan_quantity_tokens(rest: str) -> Tuple[int, int, int, str]:
    """Purpose: Accumulate box and piece totals from quantity tokens.
    Inputs/Outputs: Input is the quantity part of an outbound command; output is
        (box_total, piece_total, token_count, leftover_text).
    Side Effects / State: None.
    Dependencies: Uses QUANTITY_TOKEN_RE, BOX_UNITS and PIECE_UNITS.
    Failure Modes: None; unmatched text is returned as leftover.
    If Removed: Outbound quantities cannot be read.
    Testing Notes: "3箱2件", "2件3箱", "1箱1箱", "2pcs 1個".
    """
    box = 0
    piece = 0
    count = 0
    for match in QUANTITY_TOKEN_RE.finditer(rest):
        count += 1
        qty = int(match.group(1))
        unit = match.group(2).lower()
        if unit in BOX_UNITS:
            box += qty
        else:
            piece += qty
    leftover = QUANTITY_TOKEN_RE.sub("", rest)
    return box, piece, count, leftover


def canonical_outbound(prefix: str, box: int, piece: int, hint: Optional[str] = None) -> str:
    parts = [prefix]
    if box:
        parts.append(f"{box}箱")
    if piece:
        parts.append(f"{piece}件")
    if hint:
        parts.append(f"@{warehouse_label(hint)}")
    return " ".join(parts)


def parse_out_command(text: str) -> ParsedCommand:
    """Purpose: Parse a complete outbound-change command.
    Inputs/Outputs: Input is raw chat text; output is an "outbound" ParsedCommand
        with box/piece totals, optional warehouse hint and canonical text.
    Side Effects / State: None.
    Dependencies: Uses normalize_text, split_warehouse_hint, scan_quantity_tokens.
    Failure Modes: Raises ParseError with code empty, no_prefix, no_amount,
        no_tokens, has_extra_text or non_positive.
    If Removed: Staff cannot deduct stock by chat.
    Testing Notes: "出3箱2件" -> (3, 2); "出5" -> (0, 5); "出3箱2件給我" -> has_extra_text.
    """
    normalized = normalize_text(text)
    if not normalized:
        raise ParseError("empty")
    prefix_match = OUT_PREFIX_RE.match(normalized)
    if not prefix_match:
        raise ParseError("no_prefix", normalized)
    prefix = prefix_match.group(1)
    rest = prefix_match.group(2).strip()
    if not rest:
        raise ParseError("no_amount", normalized)

    rest, hint = split_warehouse_hint(rest)
    box, piece, token_count, _ = scan_quantity_tokens(rest)

    # A bare trailing integer counts as pieces, but only when no box token exists.
    tail = TAIL_INT_RE.search(rest)
    if tail and box == 0:
        piece += int(tail.group(1))
        token_count += 1
        rest = rest[: tail.start()]

    leftover = QUANTITY_TOKEN_RE.sub("", rest)
    if token_count == 0:
        raise ParseError("no_tokens", normalized)
    if re.sub(r"\s+", "", leftover):
        raise ParseError("has_extra_text", normalized)
    if box <= 0 and piece <= 0:
        raise ParseError("non_positive", normalized)

    return ParsedCommand(
        kind="outbound",
        box=box,
        piece=piece,
        warehouse=hint,
        normalized=canonical_outbound(prefix, box, piece, hint),
    )


def _build_outbound(match: re.Match, text: str) -> Optional[ParsedCommand]:
    try:
        return parse_out_command(text)
    except ParseError as exc:
        # Prose such as "出去吃飯" is not a command attempt.
        if exc.code == "no_tokens":
            return None
        raise


COMMAND_RULES: List[CommandRule] = [
    CommandRule(
        "version",
        re.compile(r"^(db|版本|version)$", re.IGNORECASE),
        lambda m, t: ParsedCommand(kind="version", normalized=t),
    ),
    CommandRule(
        "cancel",
        re.compile(r"^(" + "|".join(CANCEL_WORDS) + r")$", re.IGNORECASE),
        lambda m, t: ParsedCommand(kind="cancel", normalized=t),
    ),
    CommandRule(
        "warehouse",
        re.compile(r"^倉(?:庫)?\s*(.+)$"),
        lambda m, t: ParsedCommand(kind="warehouse", warehouse=m.group(1).strip(), normalized=t),
    ),
    CommandRule(
        "barcode",
        re.compile(r"^條碼[:：]?\s*(.+)$"),
        lambda m, t: ParsedCommand(kind="barcode", barcode=m.group(1).strip(), normalized=t),
    ),
    CommandRule(
        "sku_hash",
        re.compile(r"^#\s*(.+)$"),
        lambda m, t: ParsedCommand(kind="sku", sku=sku_key(m.group(1)), normalized=t),
    ),
    CommandRule(
        "sku_label",
        re.compile(r"^編號[:：]?\s*(.+)$"),
        lambda m, t: ParsedCommand(kind="sku", sku=sku_key(m.group(1)), normalized=t),
    ),
    CommandRule(
        "query",
        re.compile(r"^查(?:詢)?\s*(.+)$"),
        lambda m, t: ParsedCommand(kind="query", keyword=m.group(1).strip(), normalized=t),
    ),
    CommandRule("outbound", OUT_PREFIX_RE, _build_outbound),
]


def parse_command(text: str) -> Optional[ParsedCommand]:
    """Purpose: Map a chat message to a tagged intent.
    Inputs/Outputs: Input is raw chat text; output is a ParsedCommand or None when
        the message is not addressed to the bot.
    Side Effects / State: None.
    Dependencies: Uses normalize_text and COMMAND_RULES.
    Failure Modes: Raises ParseError for malformed outbound commands so the user
        gets a corrective hint.
    If Removed: Text messages are never routed.
    Testing Notes: One case per rule plus ordinary chat returning None.
    """
    # First matching rule wins; rule order is the priority.
    normalized = normalize_text(text)
    if not normalized:
        return None
    for rule in COMMAND_RULES:
        match = rule.pattern.match(normalized)
        if match:
            return rule.build(match, normalized)
    return None
