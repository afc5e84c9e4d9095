from __future__ import annotations

import re
from typing import Dict, Optional

UNSPECIFIED = "unspecified"
LEGACY_MAIN_ALIAS = "main_warehouse"

WAREHOUSE_LABELS: Dict[str, str] = {
    "main": "總倉",
    "swap": "夾換品",
    "withdraw": "撤台",
    UNSPECIFIED: "未指定",
}

CODE_RE = re.compile(r"^[a-z0-9_]+$", re.IGNORECASE)


def warehouse_label(code_or_label: Optional[str]) -> str:
    """Purpose: Map a warehouse code to its display label.
    Inputs/Outputs: Input is a code (or anything); output is a label string.
    Side Effects / State: None; total function.
    Dependencies: Uses WAREHOUSE_LABELS.
    Failure Modes: None; unknown values pass through unchanged, empty input maps
        to the unspecified label.
    If Removed: Replies and quick replies show raw codes.
    Testing Notes: Registry hit, legacy alias, pass-through and empty input.
    """
    # Registry hit first; otherwise show the raw value.
    key = str(code_or_label or "").strip()
    if not key:
        return WAREHOUSE_LABELS[UNSPECIFIED]
    lowered = key.lower()
    if lowered == LEGACY_MAIN_ALIAS:
        lowered = "main"
    return WAREHOUSE_LABELS.get(lowered, key)


def warehouse_code(label_or_code: Optional[str]) -> str:
    """Purpose: Map a user-provided label or code to a canonical warehouse code.
    Inputs/Outputs: Input is free text; output is a lowercase code or "unspecified".
    Side Effects / State: None; total function.
    Dependencies: Uses CODE_RE and WAREHOUSE_LABELS.
    Failure Modes: None; unresolvable input returns the unspecified sentinel.
    If Removed: "倉 總倉" and outbound "@總倉" hints cannot be resolved.
    Testing Notes: "MAIN" -> "main", "main_warehouse" -> "main", "總倉" -> "main",
        "倉X" -> "unspecified".
    """
    # Code syntax wins, then reverse lookup by label, then the sentinel.
    text = str(label_or_code or "").strip()
    if not text:
        return UNSPECIFIED
    if CODE_RE.match(text):
        lowered = text.lower()
        return "main" if lowered == LEGACY_MAIN_ALIAS else lowered
    for code, label in WAREHOUSE_LABELS.items():
        if label == text:
            return code
    return UNSPECIFIED


def normalize_code(code: Optional[str]) -> str:
    # Ledger rows may carry blank or legacy codes.
    value = str(code or "").strip().lower()
    if not value:
        return UNSPECIFIED
    return "main" if value == LEGACY_MAIN_ALIAS else value
