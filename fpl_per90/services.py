"""
FPL Per-90 - Services Module

HTTP client, upstream fetchers (live API, CSV archive, player histories),
the season loader with its cache policy, and the per-90 query against the
relational store.
"""

import asyncio
import logging
from typing import Optional, List, Dict, Tuple

import httpx
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fpl_per90.config import CONFIG
from fpl_per90.constants import (
    CURRENT_SEASON, bootstrap_url, element_summary_url,
    historical_players_url, historical_teams_url,
)
from fpl_per90.models import CachePolicy, PlayerMetrics, Scope, SeasonSnapshot
from fpl_per90.cache import cache, now_ms
from fpl_per90.db import latest_gameweek
from fpl_per90.normalizers import (
    normalize_bootstrap, normalize_historical, normalize_per90_rows,
)


logger = logging.getLogger("fpl_per90")


# ============ HTTP CLIENT ============

# Global HTTP client (initialized in lifespan)
http_client: Optional[httpx.AsyncClient] = None


def build_http_client(**kwargs) -> httpx.AsyncClient:
    sources = CONFIG["sources"]
    return httpx.AsyncClient(
        timeout=sources.timeout,
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
        headers={"User-Agent": sources.user_agent},
        **kwargs,
    )


async def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client, creating one if needed."""
    global http_client
    if http_client is None:
        http_client = build_http_client()
    return http_client


async def fetch_upstream(url: str, label: str) -> httpx.Response:
    """
    Single GET with no retry.

    Any non-2xx status or transport error becomes a 502 whose detail embeds
    the label and the upstream status, e.g. "Current season fetch failed (503)".
    """
    client = await get_http_client()
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        logger.warning(f"{label} failed on {url}: {e}")
        raise HTTPException(status_code=502, detail=f"{label} failed: {e}")

    if not response.is_success:
        logger.warning(f"{label} failed on {url} with status {response.status_code}")
        raise HTTPException(status_code=502, detail=f"{label} failed ({response.status_code})")
    return response


# ============ FPL API FETCHERS ============

def parse_json(response: httpx.Response, label: str) -> Dict:
    """Decode a JSON body; a non-JSON 2xx (e.g. a maintenance page) is a 502 like any other upstream failure."""
    try:
        return response.json()
    except ValueError as e:
        logger.warning(f"{label} returned a non-JSON body: {e}")
        raise HTTPException(status_code=502, detail=f"{label} failed: invalid JSON")


async def fetch_bootstrap(label: str = "Bootstrap fetch") -> Dict:
    response = await fetch_upstream(bootstrap_url(), label)
    return parse_json(response, label)


async def fetch_player_history(player_id: int) -> Dict:
    """Per-player element-summary payload ({"history": [...], ...})."""
    label = f"History fetch for player {player_id}"
    response = await fetch_upstream(element_summary_url(player_id), label)
    return parse_json(response, label)


async def fetch_historical_csv(season: str) -> Tuple[str, str]:
    """players_raw.csv and teams.csv text for an archive season, fetched together."""
    players_resp, teams_resp = await asyncio.gather(
        fetch_upstream(historical_players_url(season), f"Players fetch for season {season}"),
        fetch_upstream(historical_teams_url(season), f"Teams fetch for season {season}"),
    )
    return players_resp.text, teams_resp.text


# ============ SEASON LOADER ============

async def fetch_season_records(season: str) -> List[PlayerMetrics]:
    """Fetch and normalize one season: live API for "current", CSV archive otherwise."""
    if season == CURRENT_SEASON:
        data = await fetch_bootstrap("Current season fetch")
        return normalize_bootstrap(data)

    players_csv, teams_csv = await fetch_historical_csv(season)
    return normalize_historical(players_csv, teams_csv)


async def load_season_players(season: str, policy: CachePolicy = CachePolicy.USE_IF_FRESH) -> SeasonSnapshot:
    """
    Load a season under an explicit cache policy.

    Upstream failures propagate as HTTPException; the cached snapshot (if
    any) is left untouched so callers can keep serving it.
    """
    policy = CachePolicy(policy)

    if policy == CachePolicy.USE_IF_FRESH:
        cached = cache.get_fresh(season)
        if cached is not None:
            return cached

    players = await fetch_season_records(season)
    logger.info(f"Loaded {len(players)} players for season {season} ({policy.value})")

    if policy == CachePolicy.BYPASS:
        return SeasonSnapshot(season=season, updated=now_ms(), players=players)
    return cache.set(season, players)


async def load_season_or_cached(
    season: str,
    policy: CachePolicy = CachePolicy.USE_IF_FRESH,
) -> Tuple[SeasonSnapshot, Optional[str]]:
    """
    Season load for the dashboard views.

    On upstream failure the last cached snapshot is returned together with
    the error message; with nothing cached the HTTPException propagates.
    """
    try:
        return await load_season_players(season, policy), None
    except HTTPException as e:
        cached = cache.get(season)
        if cached is None:
            raise
        logger.warning(f"Serving cached season {season} after failed load: {e.detail}")
        return cached, str(e.detail)


async def force_refresh(season: str) -> SeasonSnapshot:
    """
    Refetch ignoring freshness and replace the cached snapshot.

    The old snapshot is only replaced once the fetch succeeds, so a failed
    refresh still leaves it available for stale serving.
    """
    return await load_season_players(season, CachePolicy.WRITE_THROUGH)


# ============ PER-90 QUERY ============

def scope_gameweeks(scope: Scope, gw: int) -> Optional[List[int]]:
    """
    Gameweek window for a scope.

    week -> [gw], month -> the 4 gameweeks ending at gw (ids > 0 only),
    season -> None (no filter).
    """
    scope = Scope(scope)
    if scope == Scope.WEEK:
        return [gw]
    if scope == Scope.MONTH:
        window = CONFIG["query"].month_window
        return [n for n in (gw - i for i in range(window)) if n > 0]
    return None


def _per90_sql(gameweeks: Optional[List[int]]) -> Tuple[str, Dict]:
    params: Dict = {}
    where = ""
    if gameweeks is not None:
        placeholders = []
        for i, gw in enumerate(gameweeks):
            params[f"gw{i}"] = gw
            placeholders.append(f":gw{i}")
        where = f"WHERE s.gw IN ({', '.join(placeholders)})"

    def rate(expr: str) -> str:
        return f"CASE WHEN SUM(s.minutes) > 0 THEN SUM({expr}) * 90.0 / SUM(s.minutes) ELSE 0 END"

    sql = f"""
        SELECT s.player_id AS player_id,
               MAX(s.gw) AS gw,
               SUM(s.minutes) AS minutes,
               {rate("s.total_points")} AS points_per90,
               {rate("s.xg + s.xa")} AS xgi_per90,
               {rate("s.shots")} AS shots_per90,
               {rate("s.key_passes")} AS key_passes_per90,
               {rate("s.goals")} AS goals_per90,
               {rate("s.assists")} AS assists_per90
        FROM player_gameweek_stats s
        {where}
        GROUP BY s.player_id
        HAVING SUM(s.minutes) >= :min_minutes
        ORDER BY points_per90 DESC, s.player_id
    """
    return sql, params


async def query_per90(
    session: AsyncSession,
    scope: Scope = Scope.SEASON,
    gw: int = 0,
    position: int = 0,
    min_minutes: int = None,
) -> Tuple[Optional[List[int]], List[PlayerMetrics]]:
    """
    Per-90 rows for a scope, aggregated per player over the window.

    gw=0 with week/month scope resolves to the latest stored gameweek.
    Returns (gameweeks used, completed records).
    """
    scope = Scope(scope)
    if min_minutes is None:
        min_minutes = CONFIG["query"].default_min_minutes

    try:
        if scope != Scope.SEASON and not gw:
            gw = await latest_gameweek(session) or 0
        gameweeks = scope_gameweeks(scope, gw)
        if gameweeks is not None and not gameweeks:
            return gameweeks, []

        sql, params = _per90_sql(gameweeks)
        params["min_minutes"] = min_minutes
        result = await session.execute(text(sql), params)
        rows = [dict(r) for r in result.mappings().all()]

        players_result = await session.execute(
            text("SELECT id, first_name, second_name, position, team_id, now_cost FROM players")
        )
        players = {r["id"]: dict(r) for r in players_result.mappings().all()}

        teams_result = await session.execute(text("SELECT id, name, short_name FROM teams"))
        team_names = {r["id"]: r["short_name"] for r in teams_result.mappings().all()}
    except SQLAlchemyError as e:
        logger.error(f"Per-90 query failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    # gw only identifies a row when the window is a single gameweek
    if scope != Scope.WEEK:
        for row in rows:
            row["gw"] = None

    records = normalize_per90_rows(rows, players, team_names, position=position)
    logger.info(f"Per-90 query scope={scope.value} gw={gw} returned {len(records)} players")
    return gameweeks, records
