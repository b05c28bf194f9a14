from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any
from enum import Enum
from pydantic import BaseModel


# ============ ENUMS ============

class PriceBucket(str, Enum):
    BUDGET = "budget"
    MID = "mid"
    PREMIUM = "premium"


class ValueBand(str, Enum):
    TOP = "top"
    MID = "mid"
    LOW = "low"


class Scope(str, Enum):
    WEEK = "week"
    MONTH = "month"
    SEASON = "season"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SourceKind(str, Enum):
    """Which raw shape a record came from (live JSON, archive CSV, stored per-90 row)."""
    LIVE = "live"
    HISTORICAL = "historical"
    STORED = "stored"


class CachePolicy(str, Enum):
    """
    How a season load treats the snapshot cache.

    bypass:        fetch, never read or write the cache
    use_if_fresh:  serve the snapshot while it is younger than the TTL
    write_through: always fetch, then overwrite the snapshot
    """
    BYPASS = "bypass"
    USE_IF_FRESH = "use_if_fresh"
    WRITE_THROUGH = "write_through"


# =============================================================================
# CANONICAL RECORD
# =============================================================================

# PlayerMetrics attribute -> camelCase wire key
WIRE_KEYS = {
    "id": "id",
    "name": "name",
    "position": "position",
    "team_id": "team_id",
    "team_name": "teamName",
    "price": "price",
    "minutes": "minutes",
    "points_per90": "pointsPer90",
    "xgi_per90": "xgiPer90",
    "shots_per90": "shotsPer90",
    "key_pass_per90": "keyPassPer90",
    "goals_per90": "goalsPer90",
    "assists_per90": "assistsPer90",
    "value": "value",
    "xgi_per_price": "xgiPerPrice",
    "form_score": "formScore",
    "price_bucket": "priceBucket",
    "value_band": "valueBand",
    "gw": "gw",
}


@dataclass(frozen=True)
class PlayerMetrics:
    """
    Canonical player metrics record.

    Normalizers fill the observable fields; the derived fields (value,
    xgi_per_price, form_score, price_bucket) stay None until
    calculators.complete_metrics() returns a completed copy.
    """
    id: int
    name: str
    position: int
    team_id: int
    team_name: str
    price: float = 0.0
    minutes: int = 0

    points_per90: float = 0.0
    xgi_per90: float = 0.0
    shots_per90: float = 0.0
    key_pass_per90: float = 0.0
    goals_per90: float = 0.0
    assists_per90: float = 0.0

    value: Optional[float] = None
    xgi_per_price: Optional[float] = None
    form_score: Optional[float] = None
    price_bucket: Optional[str] = None
    value_band: Optional[str] = None
    gw: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return None not in (self.value, self.xgi_per_price, self.form_score, self.price_bucket)

    def to_row(self) -> Dict[str, Any]:
        """camelCase dict for JSON responses and the season cache. Unset optionals are dropped."""
        row = {}
        for attr, value in asdict(self).items():
            if value is None and attr in ("value_band", "gw"):
                continue
            row[WIRE_KEYS[attr]] = value
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PlayerMetrics":
        """Inverse of to_row(). Unknown keys are ignored."""
        by_wire = {wire: attr for attr, wire in WIRE_KEYS.items()}
        kwargs = {by_wire[k]: v for k, v in row.items() if k in by_wire}
        return cls(**kwargs)


# ============ RESPONSE SCHEMAS ============
# These provide contract stability between frontend and backend

class PlayerRow(BaseModel):
    """Schema for a player in the dashboard table."""
    id: int
    name: str
    position: int
    team_id: int
    teamName: str
    price: float
    minutes: int
    pointsPer90: float
    xgiPer90: float
    shotsPer90: float
    keyPassPer90: float
    goalsPer90: float
    assistsPer90: float
    value: float
    xgiPerPrice: float
    formScore: float
    priceBucket: PriceBucket
    valueBand: Optional[ValueBand] = None
    gw: Optional[int] = None

    class Config:
        extra = "allow"  # Allow additional fields


class PlayersResponse(BaseModel):
    """Season table view."""
    season: str
    updated: Optional[int] = None  # epoch ms
    total: int
    stale: bool = False
    error: Optional[str] = None
    players: List[PlayerRow]


class Per90Response(BaseModel):
    """Per-90 query API response."""
    scope: Scope
    gameweeks: Optional[List[int]] = None
    players: List[PlayerRow]


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass
class SeasonSnapshot:
    """Cached normalized season: when it was fetched and the completed records."""
    season: str
    updated: int  # epoch ms
    players: List[PlayerMetrics] = field(default_factory=list)


@dataclass
class IngestionSummary:
    """Outcome of one ingestion run."""
    teams: int = 0
    gameweeks: int = 0
    players: int = 0
    gameweek_rows: int = 0
    skipped_players: List[int] = field(default_factory=list)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
