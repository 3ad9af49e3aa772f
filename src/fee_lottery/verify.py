from __future__ import annotations

import json
from typing import Any, Dict

from .draw import select_winner
from .models import TraderVolume


def verify_draw(audit: Dict[str, Any]) -> Dict[str, Any]:
    random_value = int(audit["random_value"])
    total_weight_expected = int(audit["total_weight"])

    # Recreate the entrant list in stored order (order decides the ranges)
    traders = [
        TraderVolume(e["address"], float(e["volume_usd"])) for e in audit["entrants"]
    ]

    result = select_winner(traders, random_value)
    if result.total_weight != total_weight_expected:
        raise RuntimeError(
            f"Total weight mismatch: audit={total_weight_expected} recomputed={result.total_weight}"
        )

    selection_expected = int(audit["selection"])
    if result.selection != selection_expected:
        raise RuntimeError(
            f"Selection mismatch: audit={selection_expected} recomputed={result.selection}"
        )

    winner_expected = audit["winner"]
    if result.winner != winner_expected:
        raise RuntimeError(
            f"Winner mismatch: audit={winner_expected} recomputed={result.winner}"
        )

    return {
        "ok": True,
        "winner": result.winner,
        "winner_index": result.index,
        "selection": result.selection,
        "total_weight": result.total_weight,
    }


def verify_audit(audit_path: str) -> Dict[str, Any]:
    with open(audit_path, "r", encoding="utf-8") as f:
        audit = json.load(f)
    # Receipts embed the audit under "draw"
    if "draw" in audit and isinstance(audit["draw"], dict):
        audit = audit["draw"]
    return verify_draw(audit)
