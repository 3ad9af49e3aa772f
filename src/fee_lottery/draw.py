from __future__ import annotations

import logging
import math
from bisect import bisect_right
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from .errors import NoTraders
from .models import TraderVolume

log = logging.getLogger("draw")


@dataclass(frozen=True)
class TraderRange:
    address: str
    weight: int
    start: int
    end: int  # exclusive


@dataclass(frozen=True)
class WinnerSelection:
    winner: str
    index: int
    total_weight: int
    selection: int


def trader_weight(volume_usd: float) -> int:
    # Every trader keeps at least one ticket, however small the volume.
    return max(1, math.floor(volume_usd))


def build_ranges(traders: Sequence[TraderVolume]) -> Tuple[List[TraderRange], int]:
    ranges: List[TraderRange] = []
    cursor = 0
    for t in traders:
        weight = trader_weight(t.volume_usd)
        ranges.append(TraderRange(t.wallet_address, weight, cursor, cursor + weight))
        cursor += weight
    return ranges, cursor


def select_winner(traders: Sequence[TraderVolume], random_value: int) -> WinnerSelection:
    """
    Weighted draw: selection = random_value mod total weight, and the winner is
    the first trader whose cumulative weight exceeds the selection.
    Input order decides who owns which sub-range, not anyone's odds.
    """
    if not traders:
        raise NoTraders("No traders provided.")

    ranges, total_weight = build_ranges(traders)
    selection = random_value % total_weight

    ends = [r.end for r in ranges]
    idx = bisect_right(ends, selection)
    if idx >= len(ranges):
        idx = len(ranges) - 1
        log.warning("Fallback winner: %s (index %d)", ranges[idx].address, idx)

    winner = ranges[idx]
    log.info(
        "Winner selected: %s (index %d, volume $%.2f, %d/%d)",
        winner.address,
        idx,
        traders[idx].volume_usd,
        winner.weight,
        total_weight,
    )
    return WinnerSelection(winner.address, idx, total_weight, selection)


def draw_audit(
    traders: Sequence[TraderVolume],
    random_value: int,
    selection: WinnerSelection,
    randomness_account: str | None = None,
) -> Dict[str, Any]:
    """Everything needed to re-run the draw later (see verify.verify_draw)."""
    ranges, _total = build_ranges(traders)
    return {
        # big int; store as string for safety
        "random_value": str(random_value),
        "randomness_account": randomness_account,
        "total_weight": selection.total_weight,
        "selection": selection.selection,
        "winner": selection.winner,
        "winner_index": selection.index,
        "entrants": [
            {
                "address": r.address,
                "volume_usd": t.volume_usd,
                "start": r.start,
                "end": r.end,
            }
            for r, t in zip(ranges, traders)
        ],
    }
