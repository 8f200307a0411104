"""Tests for the MCP tool functions (called directly, without a transport)."""
import pytest
from mygeotab import AuthenticationException

from fleet_ace import server
from fleet_ace.auth import GeotabAuth
from fleet_ace.context import AceContext

from conftest import write_fallback


@pytest.fixture
def tool_ctx(ace_ctx, monkeypatch):
    monkeypatch.setattr(server, "_ctx", ace_ctx)
    return ace_ctx


async def test_ace_query_returns_insight_dict(tool_ctx):
    result = await server.ace_query(query_key="top-vehicles")

    assert len(result["rows"]) == 3
    assert result["fromCache"] is False
    assert "queriedAt" in result


async def test_ace_query_rejects_missing_input(tool_ctx):
    result = await server.ace_query()

    assert result == {"error": "Provide either query_key or question"}


async def test_ace_query_unavailable(tool_ctx, fake_ace):
    fake_ace.unreachable = True

    result = await server.ace_query(question="Which trucks idled most?")

    assert result["status"] == "unavailable"
    assert "create-chat failed after 3 attempts" in result["error"]


async def test_dashboard_tool_uses_fallback_files(tool_ctx, fake_ace, settings):
    fake_ace.unreachable = True
    write_fallback(
        settings.fallback_dir,
        "ace-trip-duration.json",
        {"id": "f", "question": "q", "columns": ["metric", "value"], "rows": [{"metric": "m", "value": 1}]},
    )

    result = await server.ace_dashboard_insights()

    assert result["count"] == 1
    assert result["insights"][0]["fromCache"] is True


async def test_fleet_visits_tool(tool_ctx, fake_ace):
    fake_ace.answer = lambda question: (["trip_count"], [{"trip_count": 2}])

    result = await server.ace_fleet_visits(43.65, -79.38)

    assert result["visit_count"] == 2
    assert result["days_back"] == 7


async def test_list_and_invalidate_tools(tool_ctx):
    assert server.list_ace_queries()["count"] == 9

    tool_ctx.cache.set_entry("ace-top-vehicles.json", {})
    tool_ctx.cache.set_entry("ace-custom.json", {})
    assert server.invalidate_ace_cache() == {"removed": 2, "prefix": "ace-"}


async def test_usage_tool_with_tracking_disabled(tool_ctx):
    assert server.ace_api_usage() == {"enabled": False, "summary": [], "recent": []}


class RejectedLogin:
    """mygeotab.API stand-in whose login is always refused."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs

    def authenticate(self):
        raise AuthenticationException(self.kwargs["username"], self.kwargs["database"], self.kwargs["server"])


async def test_login_failure_is_reported_as_unavailable(settings, http, fake_ace, fake_sleep, monkeypatch):
    auth = GeotabAuth(settings, api_factory=RejectedLogin)
    ctx = AceContext(settings, auth=auth, http=http, sleep=fake_sleep)
    monkeypatch.setattr(server, "_ctx", ctx)

    result = await server.ace_query(question="Which trucks idled most?")

    assert result["status"] == "unavailable"
    assert "MyGeotab authentication failed" in result["error"]
    assert fake_ace.calls == []


async def test_unexpected_error_is_reported_as_unavailable(tool_ctx, monkeypatch):
    async def broken_query(question):
        raise RuntimeError("tracker database is locked")

    monkeypatch.setattr(tool_ctx, "query", broken_query)

    result = await server.ace_stop_visit(43.65, -79.38)

    assert result == {"error": "tracker database is locked", "status": "unavailable"}
