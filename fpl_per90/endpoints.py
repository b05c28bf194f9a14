"""
FPL Per-90 - Endpoints Module

FastAPI app initialization, CORS middleware, lifespan handler,
and ALL API endpoint handlers.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Path
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fpl_per90.config import CONFIG, config_snapshot
from fpl_per90.constants import (
    SEASONS, CURRENT_SEASON, SORTABLE_FIELDS, COLUMN_LABELS, SCOPE_LABELS,
    POSITION_MAP, ALL_POSITIONS, MIN_MINUTES_DEFAULT, bootstrap_url,
)
from fpl_per90.models import (
    CachePolicy, Scope, SortDirection,
    PlayersResponse, Per90Response,
)
from fpl_per90.cache import cache
from fpl_per90.db import AsyncSessionLocal, create_schema
from fpl_per90.ingest import run_ingestion, ingestion_summary_to_dict
from fpl_per90.rankings import rank_players, top_by_position, assign_value_bands
from fpl_per90.services import (
    build_http_client, fetch_upstream, parse_json, load_season_or_cached, force_refresh, query_per90,
)
import fpl_per90.services as services_module


logger = logging.getLogger("fpl_per90")


def _check_season(season: str) -> str:
    if season not in SEASONS:
        raise HTTPException(status_code=400, detail=f"Unknown season: {season}")
    return season


# ============ LIFESPAN ============

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup - create shared HTTP client
    services_module.http_client = build_http_client()

    # Warm season snapshots from the disk cache
    cache.load_from_disk()

    try:
        async with AsyncSessionLocal() as session:
            await create_schema(session)
        logger.info("Database schema ready")
    except Exception as e:
        logger.error(f"Database schema setup failed: {e}")

    yield

    # Shutdown - close HTTP client
    if services_module.http_client:
        await services_module.http_client.aclose()
        services_module.http_client = None


# ============ APP INITIALIZATION ============

app = FastAPI(title="FPL Per-90 API", version="1.0.0", lifespan=lifespan)

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,  # Set to True only with specific origins, not "*"
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============ LIVE PROXY ============

@app.get("/api/current")
async def get_current():
    """Upstream bootstrap-static, passed through uncached."""
    try:
        response = await fetch_upstream(bootstrap_url(), "Upstream fetch")
        data = parse_json(response, "Upstream fetch")
    except HTTPException as e:
        return JSONResponse({"error": e.detail}, status_code=502)
    return JSONResponse(data, headers={"Cache-Control": "no-store"})


@app.get("/api/seasons")
async def get_seasons():
    return {
        "seasons": [
            {"id": s, "label": "Current Season" if s == CURRENT_SEASON else s}
            for s in SEASONS
        ],
        "scopes": [{"id": k, "label": v} for k, v in SCOPE_LABELS.items()],
        "positions": [{"id": ALL_POSITIONS, "label": "All"}] + [{"id": k, "label": v} for k, v in POSITION_MAP.items()],
        "columns": [{"key": k, "label": COLUMN_LABELS[k]} for k in SORTABLE_FIELDS],
    }


# ============ SEASON TABLE ============

@app.get("/api/players", response_model=PlayersResponse)
async def get_players(
    season: str = Query(CURRENT_SEASON),
    position: int = Query(CONFIG["query"].default_position, ge=0, le=4),
    min_minutes: int = Query(MIN_MINUTES_DEFAULT, ge=0, alias="minMinutes"),
    search: str = Query("", description="Case-insensitive name search"),
    sort: str = Query(CONFIG["query"].default_sort_key),
    direction: SortDirection = Query(SortDirection.DESC, alias="dir"),
    policy: CachePolicy = Query(CachePolicy.USE_IF_FRESH),
):
    """Filtered and sorted season table. Serves the last snapshot (flagged stale) if a reload fails."""
    _check_season(season)
    if sort not in SORTABLE_FIELDS:
        raise HTTPException(status_code=400, detail=f"Unknown sort key: {sort}")

    snapshot, error = await load_season_or_cached(season, policy)
    ranked = rank_players(
        snapshot.players,
        position=position,
        min_minutes=min_minutes,
        search=search,
        sort_key=sort,
        direction=direction.value,
    )
    return {
        "season": season,
        "updated": snapshot.updated,
        "total": len(ranked),
        "stale": error is not None,
        "error": error,
        "players": [p.to_row() for p in ranked],
    }


@app.get("/api/players/top")
async def get_top_players(
    season: str = Query(CURRENT_SEASON),
    limit: int = Query(CONFIG["leaderboard"].top_n, ge=1, le=50),
):
    """Top value players per position over the whole season list."""
    _check_season(season)
    snapshot, error = await load_season_or_cached(season)
    leaders = top_by_position(snapshot.players, limit=limit)
    return {
        "season": season,
        "updated": snapshot.updated,
        "stale": error is not None,
        "error": error,
        "positions": {
            str(pos): {
                "label": POSITION_MAP[pos],
                "players": [p.to_row() for p in players],
            }
            for pos, players in leaders.items()
        },
    }


@app.get("/api/player/{player_id}")
async def get_player(
    player_id: int = Path(...),
    season: str = Query(CURRENT_SEASON),
):
    """Single player with value band (banded against the same position)."""
    _check_season(season)
    snapshot, error = await load_season_or_cached(season)
    for p in assign_value_bands(snapshot.players):
        if p.id == player_id:
            return {"season": season, "stale": error is not None, "error": error, "player": p.to_row()}
    raise HTTPException(status_code=404, detail="Player not found")


@app.post("/api/refresh")
async def refresh_season(season: str = Query(CURRENT_SEASON)):
    """Force refresh: refetch now, keeping the old snapshot if the fetch fails."""
    _check_season(season)
    snapshot = await force_refresh(season)
    return {"status": "ok", "season": season, "updated": snapshot.updated, "players": len(snapshot.players)}


# ============ PER-90 QUERY API ============

@app.get("/api/per90", response_model=Per90Response)
async def get_per90(
    scope: Scope = Query(Scope.SEASON),
    gw: int = Query(0, ge=0, le=38),
    position: int = Query(0, ge=0, le=4),
    min_minutes: int = Query(MIN_MINUTES_DEFAULT, ge=0, alias="minMinutes"),
):
    """Per-90 rates from the relational store for a week, the last 4 weeks, or the season."""
    async with AsyncSessionLocal() as session:
        gameweeks, records = await query_per90(
            session, scope=scope, gw=gw, position=position, min_minutes=min_minutes
        )
    return {
        "scope": scope,
        "gameweeks": gameweeks,
        "players": [p.to_row() for p in records],
    }


# ============ INGESTION ============

@app.post("/api/ingest")
async def trigger_ingestion():
    """Mirror the FPL API into the database (upserts, safe to re-run)."""
    summary = await run_ingestion()
    result = ingestion_summary_to_dict(summary)
    cache.last_ingestion = result
    return result


# ============ ROOT, CONFIG & HEALTH ============

@app.get("/")
async def root():
    return {"message": "FPL Per-90 API", "docs": "/docs"}


@app.get("/api/config")
async def get_config():
    """Current metric weights, thresholds and cache TTLs."""
    return config_snapshot()


@app.get("/api/health")
async def health_check():
    """Health check endpoint with cache status."""
    return {
        "status": "ok",
        "cache": {
            season: {"updated": snap.updated, "players": len(snap.players)}
            for season, snap in cache.seasons.items()
        },
        "last_ingestion": cache.last_ingestion,
    }


# ============ MAIN ============

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
