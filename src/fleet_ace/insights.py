"""High-level Ace entry points used by the MCP tools and other callers.

Everything here goes through ``FallbackCache.with_fallback`` so callers get
an ``Insight`` (with ``from_cache`` set) or an exception, never a partial
result.
"""

from __future__ import annotations

import dataclasses

from fleet_ace import queries
from fleet_ace.context import AceContext
from fleet_ace.errors import AceError
from fleet_ace.fallback import ACE_TTL, DEFAULT_TTL
from fleet_ace.models import CacheResult, Insight

STOP_VISIT_WINDOWS = (7, 30, 90)


async def run_insight_query(
    ctx: AceContext,
    query_key: str,
    coordinates: tuple[float, float] | None = None,
    radius_km: float | None = None,
    days_back: int | None = None,
    group_name: str | None = None,
) -> Insight:
    """Run a named template, cached for ``ACE_TTL`` under its fallback filename."""
    question = queries.build_question(
        query_key,
        coordinates=coordinates,
        radius_km=radius_km,
        days_back=days_back,
        group_name=group_name,
    )
    result = await ctx.cache.with_fallback(
        lambda: ctx.query(question),
        queries.fallback_file(query_key),
        ACE_TTL,
        decode=Insight.from_dict,
    )
    return _stamp(result)


async def run_custom_query(
    ctx: AceContext,
    question: str | None = None,
    query_key: str | None = None,
    coordinates: tuple[float, float] | None = None,
    radius_km: float | None = None,
    days_back: int | None = None,
    group_name: str | None = None,
) -> Insight:
    """Ask a free-form question, or a template by key, with the default TTL.

    The cache key carries the group slug so per-group answers stay apart.
    """
    if question is None and query_key:
        question = queries.build_question(
            query_key,
            coordinates=coordinates,
            radius_km=radius_km,
            days_back=days_back,
            group_name=group_name,
        )
    if not question:
        raise ValueError("Provide either query_key or question")

    result = await ctx.cache.with_fallback(
        lambda: ctx.query(question),
        queries.custom_cache_key(query_key, group_name),
        DEFAULT_TTL,
        decode=Insight.from_dict,
    )
    return _stamp(result)


async def run_stop_visit_query(
    ctx: AceContext,
    lat: float,
    lon: float,
    radius_km: float = 1.0,
    days_back: int = 90,
) -> Insight:
    """How often the fleet ended trips near (lat, lon) in the last ``days_back`` days."""
    question = queries.build_question(
        queries.STOP_VISIT,
        coordinates=(lat, lon),
        radius_km=radius_km,
        days_back=days_back,
    )
    result = await ctx.cache.with_fallback(
        lambda: ctx.query(question),
        queries.stop_visit_cache_key(lat, lon, radius_km, days_back),
        ACE_TTL,
        decode=Insight.from_dict,
    )
    return _stamp(result)


async def fleet_visit_summary(
    ctx: AceContext,
    lat: float,
    lon: float,
    radius_km: float = 1.0,
    windows: tuple[int, ...] = STOP_VISIT_WINDOWS,
) -> dict:
    """Visit count and a one-line summary, widening the lookback until visits appear.

    Each window has its own cache key (the key embeds ``days_back``), so an
    empty 7-day answer is never served for the 30- or 90-day attempt.
    """
    if not windows:
        raise ValueError("windows must contain at least one lookback in days")

    for i, days in enumerate(windows):
        insight = await run_stop_visit_query(ctx, lat, lon, radius_km=radius_km, days_back=days)
        visit_count, day_of_week = parse_visit_row(insight.rows, insight.columns)
        if visit_count > 0 or i == len(windows) - 1:
            return {
                "visit_count": visit_count,
                "summary": visit_summary(visit_count, day_of_week, days),
                "days_back": days,
                "from_cache": insight.from_cache,
            }
    raise AssertionError("unreachable")


async def dashboard_insights(
    ctx: AceContext, keys: tuple[str, ...] = queries.DASHBOARD_QUERIES
) -> list[Insight]:
    """Run the dashboard templates one after another; one failure does not block the rest."""
    insights: list[Insight] = []
    for key in keys:
        try:
            insights.append(await run_insight_query(ctx, key))
        except Exception as e:
            print(f"[insights] {key} unavailable: {e}", flush=True)

    if not insights:
        raise AceError("All Ace queries failed")
    return insights


def parse_visit_row(rows: list[dict], columns: list[str]) -> tuple[int, str]:
    """Pull (visit_count, most_common_day) from a stop-visit answer.

    Ace column names drift, so known names are tried before positions.
    """
    row = rows[0] if rows else {}

    def by_position(pos: int):
        return row.get(columns[pos]) if pos < len(columns) else None

    raw_count = _first_present(row.get("trip_count"), row.get("count"), row.get("TripCount"), by_position(0))
    try:
        visit_count = int(float(raw_count)) if raw_count is not None else 0
    except (TypeError, ValueError):
        visit_count = 0

    raw_day = _first_present(row.get("most_common_day_of_week"), row.get("CommonDay"), by_position(3))
    day = str(raw_day).strip() if raw_day is not None else ""
    return visit_count, day


def visit_summary(visit_count: int, day_of_week: str, days_back: int) -> str:
    if visit_count == 0:
        return f"No recorded fleet visits to this area in the last {days_back} days."
    if visit_count == 1:
        return f"1 fleet visit to this area in the last {days_back} days."
    s = f"{visit_count} fleet visits in the last {days_back} days"
    if day_of_week:
        s += f", mostly on {day_of_week}s"
    return s + "."


def _first_present(*values):
    for v in values:
        if v is not None and v != "":
            return v
    return None


def _stamp(result: CacheResult) -> Insight:
    # Copy so the cached instance keeps no per-call flag.
    return dataclasses.replace(result.data, from_cache=result.from_cache)
