"""Tests for the season snapshot cache and the cache-policy season loader."""
import json
from unittest.mock import patch, AsyncMock
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import httpx
import pytest
from fastapi import HTTPException

from main import DataCache, now_ms, CachePolicy, bootstrap_url, historical_players_url, historical_teams_url
from fpl_per90.services import (
    fetch_upstream,
    fetch_bootstrap,
    load_season_players,
    load_season_or_cached,
    force_refresh,
)


BOOTSTRAP_PATH = httpx.URL(bootstrap_url()).path


def _minutes_ago(minutes: int) -> int:
    return now_ms() - minutes * 60 * 1000


# =============================================================================
# DataCache
# =============================================================================

class TestDataCache:
    def test_fresh_snapshot(self, make_record):
        data_cache = DataCache(cache_file="")
        data_cache.set("current", [make_record()])
        assert data_cache.get_fresh("current") is not None

    def test_live_snapshot_goes_stale_after_ttl(self, make_record):
        data_cache = DataCache(cache_file="")
        data_cache.set("current", [make_record()], updated=_minutes_ago(6))
        assert data_cache.get_fresh("current") is None
        # Still retrievable for stale serving
        assert data_cache.get("current") is not None

    def test_archive_snapshot_uses_long_ttl(self, make_record):
        data_cache = DataCache(cache_file="")
        data_cache.set("2023-24", [make_record()], updated=_minutes_ago(60))
        assert data_cache.get_fresh("2023-24") is not None
        data_cache.set("2023-24", [make_record()], updated=_minutes_ago(25 * 60))
        assert data_cache.get_fresh("2023-24") is None

    def test_disk_round_trip(self, tmp_path, make_record):
        path = str(tmp_path / "season_cache.json")
        writer = DataCache(cache_file=path)
        snapshot = writer.set("2022-23", [make_record(id=4), make_record(id=5, gw=3)])

        reader = DataCache(cache_file=path)
        assert reader.load_from_disk() is True
        loaded = reader.get("2022-23")
        assert loaded.updated == snapshot.updated
        assert loaded.players == snapshot.players

    def test_disk_file_uses_wire_keys(self, tmp_path, make_record):
        path = tmp_path / "season_cache.json"
        DataCache(cache_file=str(path)).set("current", [make_record()])
        data = json.loads(path.read_text())
        row = data["current"]["players"][0]
        assert row["pointsPer90"] == 6.0
        assert row["teamName"] == "ARS"
        assert "valueBand" not in row

    def test_corrupt_disk_file_ignored(self, tmp_path):
        path = tmp_path / "season_cache.json"
        path.write_text("{not json")
        data_cache = DataCache(cache_file=str(path))
        assert data_cache.load_from_disk() is False
        assert data_cache.seasons == {}

    def test_missing_disk_file(self, tmp_path):
        data_cache = DataCache(cache_file=str(tmp_path / "missing.json"))
        assert data_cache.load_from_disk() is False


# =============================================================================
# upstream errors
# =============================================================================

class TestFetchUpstream:
    @pytest.mark.anyio
    async def test_status_error_becomes_502(self, mock_upstream):
        mock_upstream({BOOTSTRAP_PATH: 503})
        with pytest.raises(HTTPException) as exc_info:
            await fetch_upstream(bootstrap_url(), "Current season fetch")
        assert exc_info.value.status_code == 502
        assert exc_info.value.detail == "Current season fetch failed (503)"

    @pytest.mark.anyio
    async def test_transport_error_becomes_502(self, monkeypatch):
        import fpl_per90.services as services_module

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monkeypatch.setattr(services_module, "http_client", client)
        with pytest.raises(HTTPException) as exc_info:
            await fetch_upstream(bootstrap_url(), "Upstream fetch")
        assert exc_info.value.status_code == 502
        assert exc_info.value.detail.startswith("Upstream fetch failed:")

    @pytest.mark.anyio
    async def test_single_attempt(self, mock_upstream):
        calls = mock_upstream({BOOTSTRAP_PATH: 500})
        with pytest.raises(HTTPException):
            await fetch_upstream(bootstrap_url(), "Upstream fetch")
        assert calls == [BOOTSTRAP_PATH]


# =============================================================================
# season loader
# =============================================================================

class TestLoadSeasonPlayers:
    @pytest.mark.anyio
    async def test_use_if_fresh_serves_cache(self, mock_upstream, test_cache, bootstrap_payload):
        calls = mock_upstream({BOOTSTRAP_PATH: bootstrap_payload})
        first = await load_season_players("current")
        second = await load_season_players("current")
        assert len(calls) == 1
        assert second is first
        assert [p.id for p in first.players] == [1, 2, 3]

    @pytest.mark.anyio
    async def test_use_if_fresh_refetches_stale(self, mock_upstream, test_cache, bootstrap_payload, make_record):
        calls = mock_upstream({BOOTSTRAP_PATH: bootstrap_payload})
        test_cache.set("current", [make_record(id=99)], updated=_minutes_ago(10))
        snapshot = await load_season_players("current", CachePolicy.USE_IF_FRESH)
        assert len(calls) == 1
        assert [p.id for p in snapshot.players] == [1, 2, 3]

    @pytest.mark.anyio
    async def test_bypass_never_touches_cache(self, mock_upstream, test_cache, bootstrap_payload, make_record):
        calls = mock_upstream({BOOTSTRAP_PATH: bootstrap_payload})
        test_cache.set("current", [make_record(id=99)])
        snapshot = await load_season_players("current", CachePolicy.BYPASS)
        assert len(calls) == 1
        assert [p.id for p in snapshot.players] == [1, 2, 3]
        assert [p.id for p in test_cache.get("current").players] == [99]

    @pytest.mark.anyio
    async def test_write_through_overwrites(self, mock_upstream, test_cache, bootstrap_payload, make_record):
        calls = mock_upstream({BOOTSTRAP_PATH: bootstrap_payload})
        test_cache.set("current", [make_record(id=99)])
        await load_season_players("current", "write_through")
        assert len(calls) == 1
        assert [p.id for p in test_cache.get("current").players] == [1, 2, 3]

    @pytest.mark.anyio
    async def test_historical_season_from_csv(self, mock_upstream, test_cache):
        players_csv = (
            "id,first_name,second_name,team,element_type,now_cost,minutes,total_points\n"
            "10,Ollie,Watkins,1,4,90,900,90\n"
        )
        teams_csv = "id,name,short_name\n1,Aston Villa,AVL\n"
        mock_upstream({
            httpx.URL(historical_players_url("2023-24")).path: players_csv,
            httpx.URL(historical_teams_url("2023-24")).path: teams_csv,
        })
        snapshot = await load_season_players("2023-24")
        assert len(snapshot.players) == 1
        assert snapshot.players[0].team_name == "AVL"
        assert snapshot.players[0].value == 1.0

    @pytest.mark.anyio
    async def test_historical_failure_names_season(self, mock_upstream, test_cache):
        mock_upstream({httpx.URL(historical_teams_url("2021-22")).path: "id,name\n"})
        with pytest.raises(HTTPException) as exc_info:
            await load_season_players("2021-22")
        assert exc_info.value.detail == "Players fetch for season 2021-22 failed (404)"


class TestPolicyWithMockedFetch:
    """Policy decisions with the fetch step mocked out."""

    @pytest.mark.anyio
    @patch("fpl_per90.services.fetch_season_records", new_callable=AsyncMock)
    async def test_fresh_cache_skips_fetch(self, mock_fetch, test_cache, make_record):
        test_cache.set("2022-23", [make_record(id=7)])
        snapshot = await load_season_players("2022-23", CachePolicy.USE_IF_FRESH)
        mock_fetch.assert_not_called()
        assert [p.id for p in snapshot.players] == [7]

    @pytest.mark.anyio
    @patch("fpl_per90.services.fetch_season_records", new_callable=AsyncMock)
    async def test_write_through_always_fetches(self, mock_fetch, test_cache, make_record):
        mock_fetch.return_value = [make_record(id=8)]
        test_cache.set("2022-23", [make_record(id=7)])
        await load_season_players("2022-23", CachePolicy.WRITE_THROUGH)
        mock_fetch.assert_awaited_once_with("2022-23")
        assert [p.id for p in test_cache.get("2022-23").players] == [8]


class TestLoadSeasonOrCached:
    @pytest.mark.anyio
    async def test_failure_serves_last_snapshot(self, mock_upstream, test_cache, make_record):
        mock_upstream({BOOTSTRAP_PATH: 503})
        stale = test_cache.set("current", [make_record(id=42)], updated=_minutes_ago(30))
        snapshot, error = await load_season_or_cached("current")
        assert snapshot is stale
        assert error == "Current season fetch failed (503)"

    @pytest.mark.anyio
    async def test_failure_without_snapshot_raises(self, mock_upstream, test_cache):
        mock_upstream({BOOTSTRAP_PATH: 503})
        with pytest.raises(HTTPException) as exc_info:
            await load_season_or_cached("current")
        assert exc_info.value.status_code == 502

    @pytest.mark.anyio
    async def test_success_has_no_error(self, mock_upstream, test_cache, bootstrap_payload):
        mock_upstream({BOOTSTRAP_PATH: bootstrap_payload})
        snapshot, error = await load_season_or_cached("current")
        assert error is None
        assert len(snapshot.players) == 3


class TestForceRefresh:
    @pytest.mark.anyio
    async def test_refetches_fresh_snapshot(self, mock_upstream, test_cache, bootstrap_payload, make_record):
        calls = mock_upstream({BOOTSTRAP_PATH: bootstrap_payload})
        test_cache.set("current", [make_record(id=99)])
        snapshot = await force_refresh("current")
        assert len(calls) == 1
        assert [p.id for p in snapshot.players] == [1, 2, 3]
        assert test_cache.get("current") is snapshot

    @pytest.mark.anyio
    async def test_failure_keeps_old_snapshot_for_stale_serving(self, mock_upstream, test_cache, make_record):
        mock_upstream({BOOTSTRAP_PATH: 503})
        old = test_cache.set("current", [make_record(id=42)])
        with pytest.raises(HTTPException):
            await force_refresh("current")
        assert test_cache.get("current") is old

        snapshot, error = await load_season_or_cached("current", CachePolicy.WRITE_THROUGH)
        assert [p.id for p in snapshot.players] == [42]
        assert error == "Current season fetch failed (503)"


class TestParseJson:
    @pytest.mark.anyio
    async def test_html_body_becomes_502(self, mock_upstream):
        mock_upstream({BOOTSTRAP_PATH: "<html>maintenance</html>"})
        with pytest.raises(HTTPException) as exc_info:
            await fetch_bootstrap("Bootstrap fetch")
        assert exc_info.value.status_code == 502
        assert exc_info.value.detail == "Bootstrap fetch failed: invalid JSON"
