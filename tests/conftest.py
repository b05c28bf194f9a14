"""Shared fixtures for FPL per-90 test suite."""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import httpx
import pytest
from sqlalchemy.pool import NullPool

import fpl_per90.services as services_module
from fpl_per90.cache import DataCache
from fpl_per90.db import make_sessionmaker
from fpl_per90.models import PlayerMetrics


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def make_element():
    """Factory for creating bootstrap-static element dicts matching FPL API shape."""
    def _make(**overrides):
        base = {
            "id": 1,
            "first_name": "Test",
            "second_name": "Player",
            "web_name": "Player",
            "team": 1,
            "element_type": 3,  # MID
            "now_cost": 80,  # £8.0m
            "minutes": 900,  # 10 full games
            "total_points": 180,
            "expected_goals": "5.00",
            "expected_assists": "3.00",
            "shots": 30,
            "key_passes": 20,
            "goals_scored": 6,
            "assists": 4,
        }
        base.update(overrides)
        return base
    return _make


@pytest.fixture
def make_csv_row():
    """Factory for players_raw.csv rows (every value a string)."""
    def _make(**overrides):
        base = {
            "id": "7",
            "first_name": "Archive",
            "second_name": "Player",
            "team": "2",
            "element_type": "4",  # FWD
            "now_cost": "55",
            "minutes": "1800",
            "total_points": "120",
            "expected_goals": "9.0",
            "expected_assists": "1.0",
            "shots": "40",
            "key_passes": "10",
            "goals_scored": "10",
            "assists": "2",
        }
        base.update(overrides)
        return base
    return _make


@pytest.fixture
def make_record():
    """Factory for completed canonical records."""
    def _make(**overrides):
        base = dict(
            id=1,
            name="Test Player",
            position=3,
            team_id=1,
            team_name="ARS",
            price=8.0,
            minutes=900,
            points_per90=6.0,
            xgi_per90=0.5,
            value=0.75,
            xgi_per_price=0.06,
            form_score=3.8,
            price_bucket="premium",
        )
        base.update(overrides)
        return PlayerMetrics(**base)
    return _make


@pytest.fixture
def test_cache(monkeypatch):
    """In-memory DataCache (no disk writes) swapped into the services module."""
    data_cache = DataCache(cache_file="")
    monkeypatch.setattr(services_module, "cache", data_cache)
    return data_cache


@pytest.fixture
def session_factory(tmp_path):
    """Async session factory on a throwaway SQLite file."""
    return make_sessionmaker(f"sqlite+aiosqlite:///{tmp_path / 'fpl_per90.db'}", poolclass=NullPool)


@pytest.fixture
def mock_upstream(monkeypatch):
    """
    Route upstream GETs by URL path.

    routes: {path: payload} where payload is a dict/list (JSON), a str (text
    body), or an int (bare status code). Unknown paths return 404. Every
    requested path is recorded in `calls`.
    """
    def _install(routes):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            calls.append(path)
            payload = routes.get(path)
            if payload is None:
                return httpx.Response(404, text="not found")
            if isinstance(payload, int):
                return httpx.Response(payload, text="upstream error")
            if isinstance(payload, str):
                return httpx.Response(200, text=payload)
            return httpx.Response(200, json=payload)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monkeypatch.setattr(services_module, "http_client", client)
        return calls
    return _install


@pytest.fixture
def bootstrap_payload():
    """Small bootstrap-static payload: 2 teams, 2 gameweeks, 3 players."""
    return {
        "teams": [
            {"id": 1, "name": "Arsenal", "short_name": "ARS", "strength": 5},
            {"id": 2, "name": "Brentford", "short_name": "BRE", "strength": 3},
        ],
        "events": [
            {"id": 1, "name": "Gameweek 1", "deadline_time": "2024-08-16T17:30:00Z"},
            {"id": 2, "name": "Gameweek 2", "deadline_time": "2024-08-24T10:00:00Z"},
        ],
        "elements": [
            {"id": 1, "first_name": "Bukayo", "second_name": "Saka", "team": 1,
             "element_type": 3, "now_cost": 80, "minutes": 180, "total_points": 12,
             "expected_goals": "0.60", "expected_assists": "0.40",
             "goals_scored": 1, "assists": 1},
            {"id": 2, "first_name": "Yoane", "second_name": "Wissa", "team": 2,
             "element_type": 4, "now_cost": 75, "minutes": 45, "total_points": 6,
             "expected_goals": "0.40", "expected_assists": "0.00",
             "goals_scored": 1, "assists": 0},
            {"id": 3, "first_name": "David", "second_name": "Raya", "team": 1,
             "element_type": 1, "now_cost": 55, "minutes": 180, "total_points": 8,
             "expected_goals": "0.00", "expected_assists": "0.00",
             "goals_scored": 0, "assists": 0},
        ],
    }


@pytest.fixture
def histories():
    """element-summary payloads for players 1 and 2 (player 3 is left to fail)."""
    return {
        1: {"history": [
            {"round": 1, "minutes": 90, "total_points": 10, "goals_scored": 1, "assists": 0,
             "expected_goals": "0.50", "expected_assists": "0.30", "total_shots": 3,
             "key_passes": 2, "value": 80, "was_home": True, "opponent_team": 2},
            {"round": 2, "minutes": 90, "total_points": 2, "goals_scored": 0, "assists": 1,
             "expected_goals": "0.10", "expected_assists": "0.10", "shots_total": 1,
             "value": 80, "was_home": False, "opponent_team": 2},
        ]},
        2: {"history": [
            {"round": 1, "minutes": 45, "total_points": 6, "goals_scored": 1, "assists": 0,
             "expected_goals": "0.40", "expected_assists": "0.00", "total_shots": 2,
             "key_passes": 0, "value": 75, "was_home": False, "opponent_team": 1},
        ]},
    }


@pytest.fixture
def fpl_routes(bootstrap_payload, histories):
    """Upstream routes for a full ingestion: bootstrap OK, player 3 history 500s."""
    routes = {"/api/bootstrap-static/": bootstrap_payload}
    for player_id, payload in histories.items():
        routes[f"/api/element-summary/{player_id}/"] = payload
    routes["/api/element-summary/3/"] = 500
    return routes
