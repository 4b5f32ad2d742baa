"""
Text reports for a place's current air quality.

  report_brief  -> one line: name, index, dominant pollutant
  report_full   -> multi-line block with sub-indices, weather, URL and sources
  report        -> dispatch on a report-type tag ("brief" | "full")

Each report resolves the place once through the retrieval pipeline and
then reads only from the resolved entry. A Fault renders as its error
description followed by the place key; none of the reading fields are
touched in that case.

Field policy for Readings:
  - city.name and aqi are required; a Reading without them is malformed
    and MissingFieldError propagates.
  - everything else (time, sub-indices, URL, attributions) is optional
    and its line is left out when absent.
"""

import logging
from typing import List, Optional, Tuple

from cache_store import CacheEntry, Reading
from retrieval import RetrievalPipeline, get_pipeline, normalize_place

logger = logging.getLogger(__name__)

BRIEF = "brief"
FULL = "full"
REPORT_TYPES = (BRIEF, FULL)

CACHED_SUFFIX = " (cached)"
MAX_ATTRIBUTIONS = 2

# (label, iaqi key) in display order
POLLUTANT_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("PM2.5", "pm25"),
    ("PM10", "pm10"),
    ("NO2", "no2"),
    ("CO", "co"),
)
WEATHER_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("Temperature", "t"),
    ("Humidity", "h"),
    ("Pressure", "p"),
    ("Wind", "w"),
)


class UsageError(ValueError):
    """A caller asked for something the report surface does not offer."""
    pass


def _resolve(place: Optional[str], pipeline: Optional[RetrievalPipeline]):
    pipeline = pipeline or get_pipeline()
    place = normalize_place(place)
    return place, pipeline.resolve(place), pipeline.policy.use_cache


def _suffix(cached: bool) -> str:
    return CACHED_SUFFIX if cached else ""


def _non_reading_text(place: str, entry: Optional[CacheEntry]) -> Optional[str]:
    if entry is None:
        return f"No data available ({place})"
    if entry.kind == "fault":
        return f"{entry.description} ({place})"
    return None


def report_brief(place: Optional[str] = None, pipeline: Optional[RetrievalPipeline] = None) -> str:
    """One-line summary for a place."""
    place, entry, cached = _resolve(place, pipeline)
    text = _non_reading_text(place, entry)
    if text is not None:
        return text
    text = f"Air Quality Index in {entry.lookup('city.name')} is {entry.lookup('aqi')}"
    pollutant = entry.get("dominentpol")
    if pollutant:
        text += f" and the dominant pollutant is {pollutant}"
    return text + _suffix(cached)


def _attribution_names(reading: Reading) -> List[str]:
    names = []
    for item in reading.get("attributions", ())[:MAX_ATTRIBUTIONS]:
        name = item.get("name") if hasattr(item, "get") else None
        if name:
            names.append(str(name))
    return names


def _time_line(reading: Reading) -> Optional[str]:
    stamp = reading.get("time.s")
    if not stamp:
        return None
    tz = reading.get("time.tz")
    return f"Time: {stamp} {tz}" if tz else f"Time: {stamp}"


def render_full(reading: Reading, cached: bool = False) -> str:
    """Render a Reading as the multi-line full report."""
    lines = [
        f"Air quality in {reading.lookup('city.name')}{_suffix(cached)}",
        f"AQI: {reading.lookup('aqi')}",
    ]
    time_line = _time_line(reading)
    if time_line:
        lines.append(time_line)
    pollutant = reading.get("dominentpol")
    if pollutant:
        lines.append(f"Dominant pollutant: {pollutant}")

    for label, key in POLLUTANT_FIELDS + WEATHER_FIELDS:
        value = reading.get(("iaqi", key, "v"))
        if value is not None:
            lines.append(f"{label}: {value}")

    url = reading.get("city.url")
    if url:
        lines.append(f"URL: {url}")
    for name in _attribution_names(reading):
        lines.append(f"Source: {name}")
    return "\n".join(lines)


def report_full(place: Optional[str] = None, pipeline: Optional[RetrievalPipeline] = None) -> str:
    """Detailed multi-line report for a place."""
    place, entry, cached = _resolve(place, pipeline)
    text = _non_reading_text(place, entry)
    if text is not None:
        return text
    return render_full(entry, cached)


def report(
    place: Optional[str] = None,
    report_type: Optional[str] = None,
    pipeline: Optional[RetrievalPipeline] = None,
) -> str:
    """Dispatch to the brief or full report.

    No tag means full. An unknown tag is logged as a usage warning and
    the full report is produced anyway.
    """
    tag = (report_type or FULL).strip().lower()
    if tag == BRIEF:
        return report_brief(place, pipeline)
    if tag != FULL:
        logger.warning(
            "%s",
            UsageError(f"Unknown report type {report_type!r}; expected one of {', '.join(REPORT_TYPES)}"),
        )
    return report_full(place, pipeline)
