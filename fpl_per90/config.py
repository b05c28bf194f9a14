import os
from dataclasses import dataclass, field
from typing import Dict, List, Tuple


# =============================================================================
# DASHBOARD CONFIGURATION - calibration constants with documentation
# =============================================================================

@dataclass
class MetricsConfig:
    """
    Per-90 normalization and derived metric configuration.

    FPL encodes prices in tenths (now_cost=80 means 8.0m), so every raw
    price is divided by price_divisor before any ratio is taken.
    """

    minutes_basis: float = 90.0
    price_divisor: float = 10.0
    decimals: int = 2

    # formScore = 0.6 * pts/90 + 0.4 * xGI/90
    form_points_weight: float = 0.6
    form_xgi_weight: float = 0.4

    # Price buckets (inclusive upper bounds)
    budget_max_price: float = 5.5
    mid_max_price: float = 7.5


@dataclass
class LeaderboardConfig:
    """Top-N leaderboards and value band thresholds."""

    positions: Tuple[int, ...] = (1, 2, 3, 4)
    top_n: int = 5

    # Percentile cut-offs (within position) for valueBand
    top_band_percentile: float = 66.7
    mid_band_percentile: float = 33.3


@dataclass
class QueryConfig:
    """Defaults for the dashboard table and the per-90 query API."""

    default_min_minutes: int = 180
    default_position: int = 3
    default_sort_key: str = "value"
    default_sort_dir: str = "desc"
    month_window: int = 4


@dataclass
class CacheConfig:
    """
    Season snapshot cache.

    Live data moves during a gameweek, archive seasons never change,
    hence the very different TTLs.
    """

    live_ttl_seconds: int = 300
    historical_ttl_seconds: int = 86400
    cache_file: str = field(default_factory=lambda: os.environ.get(
        "SEASON_CACHE_FILE",
        os.path.join(os.path.dirname(__file__), "..", "data", "season_cache.json"),
    ))


@dataclass
class SourceConfig:
    """Upstream data sources."""

    fpl_base_url: str = field(default_factory=lambda: os.environ.get(
        "FPL_BASE_URL", "https://fantasy.premierleague.com/api"
    ))
    historical_base_url: str = field(default_factory=lambda: os.environ.get(
        "HISTORICAL_BASE_URL",
        "https://raw.githubusercontent.com/vaastav/Fantasy-Premier-League/master/data",
    ))
    # Past seasons from the vaastav archive; "current" is the live API
    seasons: List[str] = field(default_factory=lambda: [
        "current", "2023-24", "2022-23", "2021-22", "2020-21", "2019-20",
    ])
    timeout: float = 30.0
    user_agent: str = "FPL-Per90/1.0"


# Initialize global config
CONFIG = {
    "metrics": MetricsConfig(),
    "leaderboard": LeaderboardConfig(),
    "query": QueryConfig(),
    "cache": CacheConfig(),
    "sources": SourceConfig(),
}


def config_snapshot() -> Dict[str, Dict]:
    """Plain-dict view of CONFIG for the /api/config endpoint."""
    metrics = CONFIG["metrics"]
    leaderboard = CONFIG["leaderboard"]
    query = CONFIG["query"]
    cache_cfg = CONFIG["cache"]
    return {
        "metrics": {
            "minutes_basis": metrics.minutes_basis,
            "price_divisor": metrics.price_divisor,
            "form_weights": {"points": metrics.form_points_weight, "xgi": metrics.form_xgi_weight},
            "price_buckets": {"budget_max": metrics.budget_max_price, "mid_max": metrics.mid_max_price},
        },
        "leaderboard": {
            "top_n": leaderboard.top_n,
            "band_percentiles": {"top": leaderboard.top_band_percentile, "mid": leaderboard.mid_band_percentile},
        },
        "query": {
            "default_min_minutes": query.default_min_minutes,
            "month_window": query.month_window,
        },
        "cache": {
            "live_ttl_seconds": cache_cfg.live_ttl_seconds,
            "historical_ttl_seconds": cache_cfg.historical_ttl_seconds,
        },
        "seasons": list(CONFIG["sources"].seasons),
    }
