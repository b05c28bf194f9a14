"""
FPL Per-90 - Rankings Module

Aggregator/ranker over canonical records: table filtering, column sorting,
per-position top-N leaderboards and value bands. Everything here is a pure
transform over an immutable list; nothing mutates the master list.
"""

from collections import defaultdict
from dataclasses import replace
from functools import cmp_to_key
from typing import Dict, List, Sequence

from fpl_per90.config import CONFIG
from fpl_per90.constants import SORTABLE_FIELDS, percentileofscore
from fpl_per90.models import PlayerMetrics, SortDirection, ValueBand

__all__ = [
    "filter_players",
    "sort_players",
    "rank_players",
    "top_by_position",
    "assign_value_bands",
]


# ============ FILTERING ============

def filter_players(
    players: Sequence[PlayerMetrics],
    position: int = 0,
    min_minutes: int = 0,
    search: str = "",
) -> List[PlayerMetrics]:
    """
    Filter the table view.

    position 0 means all positions, min_minutes is inclusive, search is a
    case-insensitive substring of the player name (empty = no filter).
    """
    term = (search or "").lower()
    result = []
    for p in players:
        if position and p.position != position:
            continue
        if min_minutes and p.minutes < min_minutes:
            continue
        if term and term not in p.name.lower():
            continue
        result.append(p)
    return result


# ============ SORTING ============

def _sort_attr(key: str) -> str:
    try:
        return SORTABLE_FIELDS[key]
    except KeyError:
        raise ValueError(f"Unknown sort key: {key}") from None


def sort_players(
    players: Sequence[PlayerMetrics],
    key: str = "value",
    direction: str = "desc",
) -> List[PlayerMetrics]:
    """
    Sort by a table column.

    The comparator is two-way: 1 if a > b else -1, negated for desc. Equal
    values never compare as 0, so tied rows come out in a direction-dependent
    order (asc flips a tied pair, desc keeps it) instead of a stable one.
    """
    attr = _sort_attr(key)
    sign = -1 if SortDirection(direction) == SortDirection.DESC else 1

    def compare(a: PlayerMetrics, b: PlayerMetrics) -> int:
        delta = 1 if getattr(a, attr) > getattr(b, attr) else -1
        return sign * delta

    return sorted(players, key=cmp_to_key(compare))


def rank_players(
    players: Sequence[PlayerMetrics],
    position: int = 0,
    min_minutes: int = 0,
    search: str = "",
    sort_key: str = "value",
    direction: str = "desc",
) -> List[PlayerMetrics]:
    """Dashboard table: filter, then sort."""
    filtered = filter_players(players, position=position, min_minutes=min_minutes, search=search)
    return sort_players(filtered, key=sort_key, direction=direction)


# ============ LEADERBOARDS ============

def top_by_position(players: Sequence[PlayerMetrics], limit: int = None) -> Dict[int, List[PlayerMetrics]]:
    """
    Top-N by value for each of the four positions.

    Runs over the unfiltered master list so table filters never change the
    leaderboards. Ties keep input order.
    """
    cfg = CONFIG["leaderboard"]
    limit = cfg.top_n if limit is None else limit

    grouped: Dict[int, List[PlayerMetrics]] = {pos: [] for pos in cfg.positions}
    for p in players:
        if p.position in grouped:
            grouped[p.position].append(p)

    return {
        pos: sorted(bucket, key=lambda p: p.value or 0, reverse=True)[:limit]
        for pos, bucket in grouped.items()
    }


def assign_value_bands(players: Sequence[PlayerMetrics]) -> List[PlayerMetrics]:
    """
    Band each player's value against others at the same position.

    Percentile >= 66.7 -> top, >= 33.3 -> mid, else low. Returns new records
    in input order.
    """
    cfg = CONFIG["leaderboard"]
    values_by_position = defaultdict(list)
    for p in players:
        values_by_position[p.position].append(p.value or 0)

    banded = []
    for p in players:
        pct = percentileofscore(values_by_position[p.position], p.value or 0)
        if pct >= cfg.top_band_percentile:
            band = ValueBand.TOP.value
        elif pct >= cfg.mid_band_percentile:
            band = ValueBand.MID.value
        else:
            band = ValueBand.LOW.value
        banded.append(replace(p, value_band=band))
    return banded
