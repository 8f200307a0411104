"""Named Ace question templates.

Every question asks for explicit column names and is bounded (top N, fixed
date ranges) so results fit in Ace's 10-row ``preview_array``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

TOP_VEHICLES = "top-vehicles"
IDLE_BY_DAY = "idle-by-day"
COMMON_STOPS = "common-stops"
TRIP_DURATION = "trip-duration"
STOP_VISIT = "stop-visit"
FLEET_DISTANCE_BY_GROUP = "fleet-distance-by-group"
FLEET_VEHICLE_OUTLIERS = "fleet-vehicle-outliers"
FLEET_STOP_HOTSPOTS = "fleet-stop-hotspots"
FLEET_ROUTE_PATTERNS = "fleet-route-patterns"

DASHBOARD_QUERIES = (TOP_VEHICLES, IDLE_BY_DAY, COMMON_STOPS, TRIP_DURATION)

CUSTOM_FALLBACK_FILE = "ace-custom.json"


@dataclass(frozen=True)
class QueryTemplate:
    key: str
    label: str
    description: str
    fallback_file: str
    build: Callable[..., str]


def _stop_visit(coordinates=None, radius_km=None, days_back=None, **_):
    if not coordinates:
        raise ValueError("stop-visit query requires coordinates")
    lat, lon = coordinates
    radius = radius_km if radius_km is not None else 1.0
    days = days_back if days_back is not None else 90
    return (
        f"How many trips ended within {radius} km of latitude {lat:.4f}, "
        f"longitude {lon:.4f} in the last {days} days? "
        "Return columns: trip_count, first_visit_date, last_visit_date, most_common_day_of_week. "
        "Use UTC timezone."
    )


def _vehicle_outliers(group_name=None, days_back=None, **_):
    group = group_name or "all vehicles"
    days = days_back if days_back is not None else 7
    return (
        f"What are the top 5 vehicles by total distance in {group} in the last {days} days? "
        "Return columns: device_name, total_distance_km, trip_count, avg_idle_pct. "
        "Sort by total_distance_km descending. Use UTC timezone."
    )


def _stop_hotspots(group_name=None, days_back=None, **_):
    group = group_name or "all vehicles"
    days = days_back if days_back is not None else 30
    return (
        f"What are the top 10 most visited stop locations by vehicles in {group} "
        f"in the last {days} days? "
        "Return columns: location_name, visit_count, avg_dwell_minutes, lat, lon. "
        "Sort by visit_count descending. Use UTC timezone."
    )


def _route_patterns(group_name=None, days_back=None, **_):
    group = group_name or "all vehicles"
    days = days_back if days_back is not None else 14
    return (
        f"What are the top 5 most common origin-destination pairs for vehicles in {group} "
        f"in the last {days} days? "
        "Return columns: origin, destination, trip_count, avg_distance_km, avg_duration_minutes. "
        "Sort by trip_count descending. Use UTC timezone."
    )


def _fixed(question: str) -> Callable[..., str]:
    return lambda **_: question


QUERY_TEMPLATES: dict[str, QueryTemplate] = {
    t.key: t
    for t in [
        QueryTemplate(
            TOP_VEHICLES,
            "Top Vehicles by Distance",
            "Top 10 vehicles by total distance in the last 14 days",
            "ace-top-vehicles.json",
            _fixed(
                "What are the top 10 vehicles by total distance in the last 14 days? "
                "Return columns: device_name, total_distance_km, trip_count. "
                "Sort by total_distance_km descending. Use UTC timezone."
            ),
        ),
        QueryTemplate(
            IDLE_BY_DAY,
            "Idle Time by Day",
            "Average idle time percentage for each day of the week",
            "ace-idle-by-day.json",
            _fixed(
                "What is the average idle time percentage for each day of the week "
                "over the last 30 days? "
                "Return columns: day_of_week, avg_idle_pct, avg_idle_minutes. "
                "Order by day of week (Monday first). Use UTC timezone."
            ),
        ),
        QueryTemplate(
            COMMON_STOPS,
            "Most Common Stop Locations",
            "Top 5 most frequent trip end locations in the last 30 days",
            "ace-common-stops.json",
            _fixed(
                "What are the top 5 most common trip end locations in the last 30 days? "
                "Return columns: location_name, visit_count, avg_dwell_minutes. "
                "Sort by visit_count descending. Use UTC timezone."
            ),
        ),
        QueryTemplate(
            TRIP_DURATION,
            "Average Trip Duration",
            "Fleet trip duration statistics for this month",
            "ace-trip-duration.json",
            _fixed(
                "What are the fleet trip duration statistics for this month? "
                "Return columns: metric, value. "
                "Include: average trip duration in minutes, median trip duration in minutes, "
                "longest trip in minutes, shortest trip in minutes, total trip count. "
                "Use UTC timezone."
            ),
        ),
        QueryTemplate(
            STOP_VISIT,
            "Fleet Visit Frequency",
            "How often the fleet visits a specific location",
            "ace-stop-visit.json",
            _stop_visit,
        ),
        QueryTemplate(
            FLEET_DISTANCE_BY_GROUP,
            "Distance by Fleet Group",
            "Total distance and trip count per fleet group in the last 7 days",
            "ace-fleet-distance-by-group.json",
            _fixed(
                "What is the total distance in km and trip count per group in the last 7 days? "
                "Return columns: group_name, total_distance_km, trip_count, vehicle_count. "
                "Sort by total_distance_km descending. Use UTC timezone."
            ),
        ),
        QueryTemplate(
            FLEET_VEHICLE_OUTLIERS,
            "Vehicle Outliers in Fleet",
            "Top 5 vehicles by distance and idle time in a fleet group",
            "ace-fleet-vehicle-outliers.json",
            _vehicle_outliers,
        ),
        QueryTemplate(
            FLEET_STOP_HOTSPOTS,
            "Stop Hotspots in Fleet",
            "Most visited stop locations for a fleet group",
            "ace-fleet-stop-hotspots.json",
            _stop_hotspots,
        ),
        QueryTemplate(
            FLEET_ROUTE_PATTERNS,
            "Route Patterns in Fleet",
            "Most common origin-destination pairs for a fleet group",
            "ace-fleet-route-patterns.json",
            _route_patterns,
        ),
    ]
}


def build_question(
    query_key: str,
    coordinates: tuple[float, float] | None = None,
    radius_km: float | None = None,
    days_back: int | None = None,
    group_name: str | None = None,
) -> str:
    """Render the question for ``query_key``.

    Raises ValueError for an unknown key or when required options are missing.
    """
    template = QUERY_TEMPLATES.get(query_key)
    if template is None:
        raise ValueError(
            f'Unknown Ace query key: "{query_key}". '
            f"Valid keys: {', '.join(QUERY_TEMPLATES)}"
        )
    return template.build(
        coordinates=coordinates,
        radius_km=radius_km,
        days_back=days_back,
        group_name=group_name,
    )


def fallback_file(query_key: str) -> str:
    """Fallback filename for a template; also its cache key in the insight runner."""
    template = QUERY_TEMPLATES.get(query_key)
    return template.fallback_file if template else CUSTOM_FALLBACK_FILE


def list_queries() -> list[dict]:
    """Key, label and description of every template, for listing in a UI or tool."""
    return [
        {"key": t.key, "label": t.label, "description": t.description}
        for t in QUERY_TEMPLATES.values()
    ]


def slugify(value: str) -> str:
    """Lower-case, hyphen-separated form of a group name for cache keys."""
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def custom_cache_key(query_key: str | None = None, group_name: str | None = None) -> str:
    base = query_key or "custom"
    slug = slugify(group_name) if group_name else ""
    return f"ace-{base}-{slug}.json" if slug else f"ace-{base}.json"


def stop_visit_cache_key(lat: float, lon: float, radius_km: float, days_back: int) -> str:
    """Key from coordinates rounded to 0.01 deg (~1 km) so nearby stops share an answer."""
    lat_r = _compact_number(round(lat, 2))
    lon_r = _compact_number(round(lon, 2))
    return f"ace-stop-visit-{lat_r}-{lon_r}-r{_compact_number(radius_km)}-d{days_back}.json"


def _compact_number(value: float) -> str:
    # 1.0 -> "1", 43.65 -> "43.65"
    return str(int(value)) if float(value).is_integer() else repr(float(value))
