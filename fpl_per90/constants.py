"""
FPL Per-90 - Constants Module

Lookup tables, upstream endpoints, sortable columns, and the small numeric
utilities every normalizer shares (permissive coercion, canonical rounding,
percentile rank).
"""

import math
from typing import Any, List

from scipy import stats as scipy_stats

from fpl_per90.config import CONFIG


# ============ UPSTREAM ENDPOINTS ============

FPL_BASE_URL = CONFIG["sources"].fpl_base_url
HISTORICAL_BASE_URL = CONFIG["sources"].historical_base_url
CURRENT_SEASON = "current"
SEASONS = CONFIG["sources"].seasons


def bootstrap_url() -> str:
    return f"{FPL_BASE_URL}/bootstrap-static/"


def element_summary_url(player_id: int) -> str:
    return f"{FPL_BASE_URL}/element-summary/{player_id}/"


def historical_players_url(season: str) -> str:
    return f"{HISTORICAL_BASE_URL}/{season}/players_raw.csv"


def historical_teams_url(season: str) -> str:
    return f"{HISTORICAL_BASE_URL}/{season}/teams.csv"


# ============ POSITIONS & COLUMNS ============

POSITION_MAP = {1: "GK", 2: "DEF", 3: "MID", 4: "FWD"}
ALL_POSITIONS = 0

MIN_MINUTES_DEFAULT = CONFIG["query"].default_min_minutes

# camelCase column key -> PlayerMetrics attribute
SORTABLE_FIELDS = {
    "teamName": "team_name",
    "value": "value",
    "pointsPer90": "points_per90",
    "xgiPer90": "xgi_per90",
    "goalsPer90": "goals_per90",
    "assistsPer90": "assists_per90",
    "shotsPer90": "shots_per90",
    "keyPassPer90": "key_pass_per90",
    "minutes": "minutes",
    "price": "price",
    "formScore": "form_score",
    "xgiPerPrice": "xgi_per_price",
}

COLUMN_LABELS = {
    "teamName": "Team",
    "value": "Value (pts/£)",
    "pointsPer90": "Pts/90",
    "xgiPer90": "xGI/90",
    "goalsPer90": "G/90",
    "assistsPer90": "A/90",
    "shotsPer90": "Shots/90",
    "keyPassPer90": "KeyPass/90",
    "minutes": "Minutes",
    "price": "Price",
    "formScore": "Form",
    "xgiPerPrice": "xGI/£",
}

SCOPE_LABELS = {"week": "Gameweek", "month": "Last 4 GWs", "season": "Season"}


# ============ NUMERIC UTILITIES ============

def to_number(raw: Any) -> float:
    """
    Permissive numeric coercion used by every normalizer.

    None, empty strings, malformed strings, NaN and infinities all become 0.0.
    FPL serves xG fields as strings ("4.50"), the CSV archive serves everything
    as strings.
    """
    if raw is None:
        return 0.0
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip()
        if not text:
            return 0.0
        try:
            value = float(text)
        except ValueError:
            return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value


def to_int(raw: Any) -> int:
    return int(to_number(raw))


def round_metric(x: float, decimals: int = CONFIG["metrics"].decimals) -> float:
    """
    Canonical 2dp rounding: floor(x * 100 + 0.5) / 100.

    Half-up, not Python's banker's rounding, so 0.125 -> 0.13.
    """
    factor = 10 ** decimals
    return math.floor(x * factor + 0.5) / factor


def percentileofscore(data: List[float], score: float) -> float:
    """Percentile rank of a score relative to a list of scores (mean of strict/weak)."""
    if not data:
        return 50.0
    return float(scipy_stats.percentileofscore(data, score, kind="mean"))
