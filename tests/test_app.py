"""Tests for consent_audit.app — HTTP routes and error mapping."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import testclient

from consent_audit import app as app_mod
from consent_audit.utils import errors


@pytest.fixture()
def client() -> Iterator[testclient.TestClient]:
    with testclient.TestClient(app_mod.app) as test_client:
        yield test_client


@pytest.fixture()
def fake_orchestrator(client, analysis_result) -> MagicMock:
    audit = MagicMock()
    audit.analyze = AsyncMock(return_value=analysis_result)
    audit.analyze_quick = AsyncMock(return_value=analysis_result)
    client.app.state.orchestrator = audit
    return audit


class TestHealth:
    def test_health(self, client) -> None:
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "browserRunning": False, "openSessions": 0}


class TestAnalyze:
    def test_full_analysis(self, client, fake_orchestrator, analysis_result) -> None:
        response = client.post("/api/analyze", json={"url": "https://www.example.com/"})
        assert response.status_code == 200
        body = response.json()
        assert body["url"] == "https://www.example.com/"
        assert body["score"] == analysis_result.score
        assert "scoreBreakdown" in body
        assert "gdprChecklist" in body
        fake_orchestrator.analyze.assert_awaited_once_with("https://www.example.com/")
        fake_orchestrator.analyze_quick.assert_not_awaited()

    def test_quick_analysis(self, client, fake_orchestrator) -> None:
        response = client.post("/api/analyze", json={"url": "example.com", "quick": True})
        assert response.status_code == 200
        fake_orchestrator.analyze_quick.assert_awaited_once_with("example.com")

    @pytest.mark.parametrize(
        ("error", "status_code"),
        [
            (errors.InvalidUrl("Ungültige URL: x y"), 400),
            (errors.NavigationTimeout("Navigation timed out"), 504),
            (errors.NavigationFailed("net::ERR_NAME_NOT_RESOLVED"), 502),
            (errors.SessionUnavailable("Browser launch failed"), 502),
        ],
    )
    def test_error_mapping(self, client, fake_orchestrator, error, status_code) -> None:
        fake_orchestrator.analyze.side_effect = error
        response = client.post("/api/analyze", json={"url": "https://www.example.com/"})
        assert response.status_code == status_code
        assert response.json()["detail"] == str(error)

    def test_missing_url(self, client, fake_orchestrator) -> None:
        response = client.post("/api/analyze", json={})
        assert response.status_code == 422


class TestAnalyzeStream:
    def test_stream(self, client, fake_orchestrator) -> None:
        async def run(url, on_step):
            return fake_orchestrator.analyze.return_value

        fake_orchestrator.analyze_quick.side_effect = run
        response = client.get("/api/analyze-stream", params={"url": "www.example.com", "quick": "true"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "event: complete" in response.text
        fake_orchestrator.analyze_quick.assert_awaited_once()
        assert fake_orchestrator.analyze_quick.await_args.args[0] == "https://www.example.com"

    def test_stream_invalid_url(self, client, fake_orchestrator) -> None:
        response = client.get("/api/analyze-stream", params={"url": "not a url"})
        assert response.status_code == 200
        assert response.text.startswith("event: error\n")
        fake_orchestrator.analyze.assert_not_awaited()
