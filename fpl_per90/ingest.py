"""
FPL Per-90 - Ingestion Module

Mirrors the FPL API into the relational store: teams, gameweeks, players and
per-gameweek player stats. Callable from the API (POST /api/ingest), tests,
or the command line:

    python -m fpl_per90.ingest

Every write is an upsert keyed by the natural id, so re-running the job
updates rows in place. The bootstrap fetch is all-or-nothing; a failing
per-player history fetch only skips that player.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fpl_per90.constants import to_int, to_number
from fpl_per90.db import AsyncSessionLocal, create_schema
from fpl_per90.models import IngestionSummary
from fpl_per90.services import fetch_bootstrap, fetch_player_history
import fpl_per90.services as services_module

logger = logging.getLogger("fpl_per90")


# =============================================================================
# UPSERT STATEMENTS
# =============================================================================

def _upsert_sql(table: str, columns: List[str], key: List[str]) -> str:
    """INSERT ... ON CONFLICT (key) DO UPDATE for every non-key column."""
    cols = ", ".join(columns)
    values = ", ".join(f":{c}" for c in columns)
    updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c not in key)
    return (
        f"INSERT INTO {table} ({cols}) VALUES ({values}) "
        f"ON CONFLICT ({', '.join(key)}) DO UPDATE SET {updates}"
    )


TEAM_COLUMNS = ["id", "name", "short_name", "strength"]
GAMEWEEK_COLUMNS = ["id", "name", "deadline"]
PLAYER_COLUMNS = ["id", "first_name", "second_name", "team_id", "position", "now_cost"]
STAT_COLUMNS = [
    "player_id", "gw", "minutes", "goals", "assists", "xg", "xa", "shots",
    "key_passes", "total_points", "price", "was_home", "opponent_team",
]

UPSERT_TEAMS = _upsert_sql("teams", TEAM_COLUMNS, ["id"])
UPSERT_GAMEWEEKS = _upsert_sql("gameweeks", GAMEWEEK_COLUMNS, ["id"])
UPSERT_PLAYERS = _upsert_sql("players", PLAYER_COLUMNS, ["id"])
UPSERT_STATS = _upsert_sql("player_gameweek_stats", STAT_COLUMNS, ["player_id", "gw"])


# =============================================================================
# ROW MAPPING
# =============================================================================

def team_rows(bootstrap: Dict) -> List[Dict]:
    return [
        {
            "id": t["id"],
            "name": t.get("name", ""),
            "short_name": t.get("short_name", ""),
            "strength": t.get("strength"),
        }
        for t in bootstrap.get("teams", [])
    ]


def gameweek_rows(bootstrap: Dict) -> List[Dict]:
    return [
        {"id": e["id"], "name": e.get("name", ""), "deadline": e.get("deadline_time")}
        for e in bootstrap.get("events", [])
    ]


def player_rows(bootstrap: Dict) -> List[Dict]:
    return [
        {
            "id": p["id"],
            "first_name": p.get("first_name", ""),
            "second_name": p.get("second_name", ""),
            "team_id": p.get("team"),
            "position": p.get("element_type"),
            "now_cost": to_int(p.get("now_cost")),
        }
        for p in bootstrap.get("elements", [])
    ]


def _first_present(entry: Dict, *keys):
    for key in keys:
        if entry.get(key) is not None:
            return entry[key]
    return 0


def gameweek_stat_rows(player_id: int, summary: Dict) -> List[Dict]:
    """element-summary history -> player_gameweek_stats rows (one per fixture round)."""
    rows = []
    for h in summary.get("history", []):
        rows.append({
            "player_id": player_id,
            "gw": to_int(h.get("round")),
            "minutes": to_int(h.get("minutes")),
            "goals": to_int(h.get("goals_scored")),
            "assists": to_int(h.get("assists")),
            # FPL serves xG/xA as strings ("0.35")
            "xg": to_number(h.get("expected_goals")),
            "xa": to_number(h.get("expected_assists")),
            "shots": to_int(_first_present(h, "total_shots", "shots_total")),
            "key_passes": to_int(h.get("key_passes")),
            "total_points": to_int(h.get("total_points")),
            "price": to_int(h.get("value")),
            "was_home": h.get("was_home"),
            "opponent_team": h.get("opponent_team"),
        })
    return rows


# =============================================================================
# JOB
# =============================================================================

async def _upsert(session: AsyncSession, statement: str, rows: List[Dict]) -> int:
    if rows:
        await session.execute(text(statement), rows)
    return len(rows)


async def run_ingestion(session_factory: Optional[async_sessionmaker] = None) -> IngestionSummary:
    """
    Run one ingestion pass.

    Raises HTTPException if the bootstrap fetch fails; nothing is written in
    that case. Player histories are fetched one at a time.
    """
    session_factory = session_factory or AsyncSessionLocal
    summary = IngestionSummary(started_at=datetime.now(timezone.utc).isoformat())

    try:
        bootstrap = await fetch_bootstrap("Bootstrap fetch")
    except HTTPException as e:
        logger.error(f"Ingestion aborted, bootstrap unavailable: {e.detail}")
        raise

    async with session_factory() as session:
        await create_schema(session)

        summary.teams = await _upsert(session, UPSERT_TEAMS, team_rows(bootstrap))
        summary.gameweeks = await _upsert(session, UPSERT_GAMEWEEKS, gameweek_rows(bootstrap))
        summary.players = await _upsert(session, UPSERT_PLAYERS, player_rows(bootstrap))
        await session.commit()
        logger.info(
            f"Upserted {summary.teams} teams, {summary.gameweeks} gameweeks, {summary.players} players"
        )

        for player in bootstrap.get("elements", []):
            player_id = player["id"]
            try:
                history = await fetch_player_history(player_id)
            except HTTPException as e:
                logger.warning(f"Skipping player {player_id}: {e.detail}")
                summary.skipped_players.append(player_id)
                continue

            rows = gameweek_stat_rows(player_id, history)
            if rows:
                summary.gameweek_rows += await _upsert(session, UPSERT_STATS, rows)
                await session.commit()

    summary.finished_at = datetime.now(timezone.utc).isoformat()
    logger.info(
        f"Ingestion finished: {summary.gameweek_rows} gameweek rows, "
        f"{len(summary.skipped_players)} players skipped"
    )
    return summary


def ingestion_summary_to_dict(summary: IngestionSummary) -> Dict:
    return {
        "teams": summary.teams,
        "gameweeks": summary.gameweeks,
        "players": summary.players,
        "gameweek_rows": summary.gameweek_rows,
        "skipped_players": list(summary.skipped_players),
        "started_at": summary.started_at,
        "finished_at": summary.finished_at,
    }


async def _main() -> Dict:
    try:
        return ingestion_summary_to_dict(await run_ingestion())
    finally:
        if services_module.http_client:
            await services_module.http_client.aclose()
            services_module.http_client = None


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print(asyncio.run(_main()))
