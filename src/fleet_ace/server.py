"""Fleet Ace MCP Server: Geotab Ace analytics with cached and file-backed fallbacks."""

from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()

from mcp.server.fastmcp import FastMCP

from fleet_ace import insights, queries
from fleet_ace.context import AceContext

# Initialize FastMCP server
mcp = FastMCP(
    "Fleet Ace",
    instructions=(
        "You are a fleet analytics assistant connected to Geotab Ace, an AI that answers "
        "natural-language questions over a MyGeotab database. Ace queries take 30-90 seconds. "
        "Answers are cached in memory and fall back to recorded results when Ace is "
        "unavailable; a result with fromCache=true may be stale. Use list_ace_queries to see "
        "the named questions, ace_query to ask one (or any free-form question), and "
        "ace_fleet_visits to find how often the fleet visits a location."
    ),
)

# Shared context (initialized lazily on first use)
_ctx: AceContext | None = None


def _get_ctx() -> AceContext:
    global _ctx
    if _ctx is None:
        _ctx = AceContext.from_env()
    return _ctx


def _unavailable(e: Exception) -> dict:
    print(f"[server] Ace unavailable: {e}", flush=True)
    return {"error": str(e), "status": "unavailable"}


# ---------------------------------------------------------------------------
# Tool 1: Ace Query
# ---------------------------------------------------------------------------
@mcp.tool()
async def ace_query(
    question: str | None = None,
    query_key: str | None = None,
    group_name: str | None = None,
    days_back: int | None = None,
) -> dict:
    """Ask Geotab Ace a question about the fleet.

    Pass either a free-form question or a named query_key (see
    list_ace_queries). Answers are cached for 5 minutes.

    Args:
        question: Natural-language question, e.g. 'Which vehicles idled most last week?'
        query_key: Named question template, e.g. 'fleet-vehicle-outliers'
        group_name: Fleet group to scope group-aware templates to
        days_back: Lookback in days for templates that accept one
    """
    try:
        insight = await insights.run_custom_query(
            _get_ctx(),
            question=question,
            query_key=query_key,
            group_name=group_name,
            days_back=days_back,
        )
        return insight.to_dict()
    except ValueError as e:
        return {"error": str(e)}
    except Exception as e:
        return _unavailable(e)


# ---------------------------------------------------------------------------
# Tool 2: Dashboard Insights
# ---------------------------------------------------------------------------
@mcp.tool()
async def ace_dashboard_insights() -> dict:
    """Run the four dashboard questions: top vehicles, idle by day, common stops, trip duration.

    Queries run one after another (2-6 minutes uncached). Individual failures
    are skipped; answers are cached for 30 minutes.
    """
    try:
        results = await insights.dashboard_insights(_get_ctx())
        return {"count": len(results), "insights": [i.to_dict() for i in results]}
    except Exception as e:
        return _unavailable(e)


# ---------------------------------------------------------------------------
# Tool 3: Stop Visit
# ---------------------------------------------------------------------------
@mcp.tool()
async def ace_stop_visit(
    lat: float,
    lon: float,
    radius_km: float = 1.0,
    days_back: int = 90,
) -> dict:
    """How many trips ended near a location, with first/last visit and busiest weekday.

    Args:
        lat: Latitude of the location
        lon: Longitude of the location
        radius_km: Search radius in kilometres (default 1.0)
        days_back: Lookback window in days (default 90)
    """
    try:
        insight = await insights.run_stop_visit_query(
            _get_ctx(), lat, lon, radius_km=radius_km, days_back=days_back
        )
        return insight.to_dict()
    except ValueError as e:
        return {"error": str(e)}
    except Exception as e:
        return _unavailable(e)


# ---------------------------------------------------------------------------
# Tool 4: Fleet Visits Summary
# ---------------------------------------------------------------------------
@mcp.tool()
async def ace_fleet_visits(lat: float, lon: float, radius_km: float = 1.0) -> dict:
    """One-line summary of fleet visits to a location.

    Looks back 7 days first and widens to 30 then 90 days until visits are found.

    Args:
        lat: Latitude of the location
        lon: Longitude of the location
        radius_km: Search radius in kilometres (default 1.0)
    """
    try:
        return await insights.fleet_visit_summary(_get_ctx(), lat, lon, radius_km=radius_km)
    except ValueError as e:
        return {"error": str(e)}
    except Exception as e:
        return _unavailable(e)


# ---------------------------------------------------------------------------
# Tool 5: List Ace Queries
# ---------------------------------------------------------------------------
@mcp.tool()
def list_ace_queries() -> dict:
    """List the named Ace question templates usable as query_key."""
    templates = queries.list_queries()
    return {"count": len(templates), "queries": templates}


# ---------------------------------------------------------------------------
# Tool 6: Invalidate Ace Cache
# ---------------------------------------------------------------------------
@mcp.tool()
def invalidate_ace_cache(prefix: str = "ace-") -> dict:
    """Drop cached Ace answers so the next call asks Ace again.

    Args:
        prefix: Only drop cache keys starting with this prefix (default: all Ace answers)
    """
    removed = _get_ctx().cache.invalidate_prefix(prefix)
    return {"removed": removed, "prefix": prefix}


# ---------------------------------------------------------------------------
# Tool 7: Ace API Usage
# ---------------------------------------------------------------------------
@mcp.tool()
def ace_api_usage(hours: int = 24, recent: int = 20) -> dict:
    """Ace call and cache statistics from the local call log.

    Args:
        hours: Summary window in hours (default 24)
        recent: Number of most recent calls to include (default 20)
    """
    tracker = _get_ctx().tracker
    if not tracker.enabled:
        return {"enabled": False, "summary": [], "recent": []}
    return {
        "enabled": True,
        "summary": tracker.summary(hours=hours),
        "recent": tracker.recent(limit=recent),
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def main():
    """Run the Fleet Ace MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
