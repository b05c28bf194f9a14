"""
FPL Per-90 - Normalizers Module

Row normalizer: maps the three raw shapes the dashboard consumes onto the
canonical PlayerMetrics record.

- live:       bootstrap-static element (season-to-date totals)
- historical: players_raw.csv row from the vaastav archive (all strings)
- stored:     per-90 row read back from player_gameweek_stats + metadata

Adapters only fill observable fields; derived metrics come from
calculators.complete_metrics().
"""

import csv
import io
import logging
from typing import Dict, List, Mapping, Optional, Any

from fpl_per90.calculators import per90_scale, scale_to_per90, price_from_cost, complete_metrics
from fpl_per90.constants import to_number, to_int, round_metric
from fpl_per90.models import PlayerMetrics, SourceKind

logger = logging.getLogger("fpl_per90")

TeamNames = Mapping[int, str]


# =============================================================================
# LOOKUPS
# =============================================================================

def team_label(team_id: int, team_names: TeamNames) -> str:
    """Short name for a team id, or the synthetic "Team {id}" label on a miss."""
    name = team_names.get(team_id)
    if name:
        return name
    return f"Team {team_id}"


def team_names_from_bootstrap(teams: List[Dict]) -> Dict[int, str]:
    return {to_int(t.get("id")): t.get("short_name", "") for t in teams}


def team_names_from_csv(rows: List[Dict[str, str]]) -> Dict[int, str]:
    """teams.csv rows: prefer short_name, then name, then the synthetic label."""
    names = {}
    for row in rows:
        team_id = to_int(row.get("id"))
        names[team_id] = row.get("short_name") or row.get("name") or f"Team {row.get('id', '')}"
    return names


# =============================================================================
# CSV PARSING
# =============================================================================

def parse_csv(text: str) -> List[Dict[str, str]]:
    """
    Header-driven CSV parse.

    Handles double-quote escaping and embedded commas. Blank lines are
    skipped, short rows are padded with "" and every value stays a string.
    """
    if not text or not text.strip():
        return []
    reader = csv.DictReader(io.StringIO(text.strip()), restval="")
    rows = []
    for row in reader:
        if not any((v or "").strip() for k, v in row.items() if k is not None):
            continue
        # Overflow cells land under the None key; drop them
        row.pop(None, None)
        rows.append(row)
    return rows


# =============================================================================
# ADAPTERS
# =============================================================================

def _from_totals(raw: Mapping[str, Any], team_names: TeamNames) -> PlayerMetrics:
    """Shared path for live elements and CSV rows: both carry season totals."""
    minutes = max(0, to_int(raw.get("minutes")))
    scale = per90_scale(minutes)

    xg = to_number(raw.get("expected_goals"))
    xa = to_number(raw.get("expected_assists"))
    team_id = to_int(raw.get("team"))
    first_name = raw.get("first_name") or ""
    second_name = raw.get("second_name") or ""

    return PlayerMetrics(
        id=to_int(raw.get("id")),
        name=f"{first_name} {second_name}".strip(),
        position=to_int(raw.get("element_type")),
        team_id=team_id,
        team_name=team_label(team_id, team_names),
        price=price_from_cost(to_number(raw.get("now_cost"))),
        minutes=minutes,
        points_per90=scale_to_per90(to_number(raw.get("total_points")), scale),
        xgi_per90=scale_to_per90(xg + xa, scale),
        shots_per90=scale_to_per90(to_number(raw.get("shots")), scale),
        key_pass_per90=scale_to_per90(to_number(raw.get("key_passes")), scale),
        goals_per90=scale_to_per90(to_number(raw.get("goals_scored")), scale),
        assists_per90=scale_to_per90(to_number(raw.get("assists")), scale),
    )


def normalize_element(element: Mapping[str, Any], team_names: TeamNames) -> PlayerMetrics:
    """Live bootstrap-static element -> partial canonical record."""
    return _from_totals(element, team_names)


def normalize_csv_row(row: Mapping[str, str], team_names: TeamNames) -> PlayerMetrics:
    """Archive players_raw.csv row -> partial canonical record. Bad numbers read as 0."""
    return _from_totals(row, team_names)


def normalize_per90_row(
    row: Mapping[str, Any],
    players: Mapping[int, Mapping[str, Any]],
    team_names: TeamNames,
) -> PlayerMetrics:
    """
    Stored per-90 row + player metadata -> partial canonical record.

    The rates are already per 90 (computed in SQL), so they are only rounded.
    Missing metadata falls back to "#<id>" and team 0.
    """
    player_id = to_int(row.get("player_id"))
    meta = players.get(player_id)

    if meta:
        name = f"{meta.get('first_name') or ''} {meta.get('second_name') or ''}".strip()
        team_id = to_int(meta.get("team_id"))
        position = to_int(meta.get("position"))
        price = price_from_cost(to_number(meta.get("now_cost")))
    else:
        name = f"#{player_id}"
        team_id = 0
        position = 0
        price = 0.0

    gw = row.get("gw")
    return PlayerMetrics(
        id=player_id,
        name=name,
        position=position,
        team_id=team_id,
        team_name=team_label(team_id, team_names),
        price=price,
        minutes=max(0, to_int(row.get("minutes"))),
        points_per90=round_metric(to_number(row.get("points_per90"))),
        xgi_per90=round_metric(to_number(row.get("xgi_per90"))),
        shots_per90=round_metric(to_number(row.get("shots_per90"))),
        key_pass_per90=round_metric(to_number(row.get("key_passes_per90"))),
        goals_per90=round_metric(to_number(row.get("goals_per90"))),
        assists_per90=round_metric(to_number(row.get("assists_per90"))),
        gw=to_int(gw) if gw is not None else None,
    )


_ADAPTERS = {
    SourceKind.LIVE: normalize_element,
    SourceKind.HISTORICAL: normalize_csv_row,
    SourceKind.STORED: normalize_per90_row,
}


def normalize_record(kind: SourceKind, raw: Mapping[str, Any], *lookups) -> PlayerMetrics:
    """
    Dispatch one raw record to its adapter and complete the derived metrics.

    lookups: (team_names,) for live/historical, (players, team_names) for stored.
    """
    adapter = _ADAPTERS[SourceKind(kind)]
    return complete_metrics(adapter(raw, *lookups))


# =============================================================================
# WHOLE-SOURCE HELPERS
# =============================================================================

def normalize_bootstrap(bootstrap: Dict) -> List[PlayerMetrics]:
    """Live bootstrap-static payload -> completed records, in element order."""
    team_names = team_names_from_bootstrap(bootstrap.get("teams", []))
    return [
        normalize_record(SourceKind.LIVE, element, team_names)
        for element in bootstrap.get("elements", [])
    ]


def normalize_historical(players_csv: str, teams_csv: str) -> List[PlayerMetrics]:
    """players_raw.csv + teams.csv text -> completed records, in file order."""
    team_names = team_names_from_csv(parse_csv(teams_csv))
    rows = parse_csv(players_csv)
    logger.info(f"Parsed {len(rows)} archive player rows, {len(team_names)} teams")
    return [normalize_record(SourceKind.HISTORICAL, row, team_names) for row in rows]


def normalize_per90_rows(
    rows: List[Mapping[str, Any]],
    players: Mapping[int, Mapping[str, Any]],
    team_names: TeamNames,
    position: Optional[int] = None,
) -> List[PlayerMetrics]:
    """Stored rows -> completed records; position (1-4) filters via metadata."""
    records = [normalize_record(SourceKind.STORED, row, players, team_names) for row in rows]
    if position:
        records = [r for r in records if r.position == position]
    return records
