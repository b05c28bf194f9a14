import json
import os
import logging
from datetime import datetime
from typing import Optional, Dict, List

from fpl_per90.config import CONFIG
from fpl_per90.constants import CURRENT_SEASON
from fpl_per90.models import PlayerMetrics, SeasonSnapshot

logger = logging.getLogger("fpl_per90")


def now_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


class DataCache:
    def __init__(self, cache_file: Optional[str] = None):
        # season -> {updated: epoch ms, players: [PlayerMetrics]}
        self.seasons: Dict[str, SeasonSnapshot] = {}
        self.cache_file = cache_file if cache_file is not None else CONFIG["cache"].cache_file
        self.live_ttl = CONFIG["cache"].live_ttl_seconds
        self.historical_ttl = CONFIG["cache"].historical_ttl_seconds
        # Last ingestion run (for /api/health)
        self.last_ingestion: Optional[Dict] = None

    def ttl_for(self, season: str) -> int:
        return self.live_ttl if season == CURRENT_SEASON else self.historical_ttl

    def get(self, season: str) -> Optional[SeasonSnapshot]:
        """Snapshot regardless of age (used to keep showing data after a failed load)."""
        return self.seasons.get(season)

    def get_fresh(self, season: str) -> Optional[SeasonSnapshot]:
        """Snapshot only if younger than the season TTL."""
        snapshot = self.seasons.get(season)
        if snapshot is None:
            return None
        age_seconds = (now_ms() - snapshot.updated) / 1000
        if age_seconds > self.ttl_for(season):
            return None  # Stale
        return snapshot

    def set(self, season: str, players: List[PlayerMetrics], updated: Optional[int] = None) -> SeasonSnapshot:
        snapshot = SeasonSnapshot(season=season, updated=updated or now_ms(), players=list(players))
        self.seasons[season] = snapshot
        self.save_to_disk()
        return snapshot

    # Disk persistence is best-effort: failures are logged and ignored
    def save_to_disk(self):
        """Persist all season snapshots as {season: {updated, players}}."""
        if not self.cache_file:
            return
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.cache_file)), exist_ok=True)
            data = {
                season: {
                    "updated": snap.updated,
                    "players": [p.to_row() for p in snap.players],
                }
                for season, snap in self.seasons.items()
            }
            with open(self.cache_file, "w") as f:
                json.dump(data, f)
            logger.info(f"Saved {len(self.seasons)} season snapshots to disk")
        except Exception as e:
            logger.warning(f"Failed to save season cache: {e}")

    def load_from_disk(self) -> bool:
        """Load persisted snapshots. Age is checked on read, not here."""
        if not self.cache_file:
            return False
        try:
            if not os.path.exists(self.cache_file):
                return False
            with open(self.cache_file, "r") as f:
                data = json.load(f)

            for season, payload in data.items():
                players = [PlayerMetrics.from_row(row) for row in payload.get("players", [])]
                self.seasons[season] = SeasonSnapshot(
                    season=season,
                    updated=int(payload.get("updated", 0)),
                    players=players,
                )

            logger.info(f"Loaded {len(data)} season snapshots from disk cache")
            return True
        except Exception as e:
            logger.warning(f"Failed to load season cache from disk: {e}")
            return False


cache = DataCache()
