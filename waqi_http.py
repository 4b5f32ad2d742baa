"""
WAQI (World Air Quality Index) HTTP layer.

All requests to api.waqi.info go through this module. It provides:
- Place-to-path mapping for the feed endpoint (city name, "@<uid>"
  station ids, "here", and "lat,lon" pairs sent as "geo:lat;lon")
- A single synchronous GET per call; no retries, no caching
- aqi_trace integration for observability

The client returns the parsed JSON body as-is. Interpreting the
service-level "status" field is the retrieval pipeline's job; this
module only raises TransportError when no usable body came back
(connection failure, timeout, HTTP error status, non-JSON body).

Data source:
  - https://aqicn.org/json-api/doc/
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from aqi_config import AQIConfig, load_config
from aqi_trace import get_trace

logger = logging.getLogger(__name__)

HERE = "here"

_GEO_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")


class TransportError(Exception):
    """Raised when the WAQI API could not be reached or returned no usable body."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class StationMatch:
    """One candidate station from a keyword search."""
    uid: int
    name: str
    aqi: str                        # WAQI reports "-" when a station has no current value
    lat: Optional[float] = None
    lon: Optional[float] = None
    url: str = ""
    stime: str = ""
    tz: str = ""

    @property
    def place_key(self) -> str:
        """Station id in the form the feed endpoint accepts."""
        return f"@{self.uid}"


def parse_geo(place: str) -> Optional[Tuple[str, str]]:
    """Return (lat, lon) strings if place is a "lat,lon" pair, else None."""
    m = _GEO_RE.match(place)
    if not m:
        return None
    return m.group(1), m.group(2)


def feed_path(place: str) -> str:
    """Map a place key to the path segment after /feed/."""
    geo = parse_geo(place)
    if geo is not None:
        return f"geo:{geo[0]};{geo[1]}"
    return place


class WAQIHTTPClient:
    DEFAULT_TIMEOUT = 10  # seconds

    def __init__(self, config: Optional[AQIConfig] = None):
        config = config or load_config()
        self.api_key = config.api_key
        self.base_url = config.base_url.rstrip("/")
        self.timeout = config.timeout or self.DEFAULT_TIMEOUT

    def feed_url(self, place: str) -> str:
        path = quote(feed_path(place), safe="@:;,.-")
        return f"{self.base_url}/feed/{path}/"

    def fetch_feed(self, place: str) -> Dict[str, Any]:
        """Fetch the current feed for a place.

        Returns:
            Parsed JSON body, normally {"status": "ok"|"error", "data": ...}.

        Raises:
            TransportError: on network failure, timeout, HTTP status >= 400,
                or a body that is not a JSON object.
        """
        body = self._get(
            self.feed_url(place),
            params={"token": self.api_key},
            endpoint="feed",
            place=place,
        )
        if not isinstance(body, dict):
            raise TransportError(f"WAQI feed returned a non-object body for {place!r}")
        return body

    def search(self, keyword: str) -> List[StationMatch]:
        """Look up stations by name. Results are never cached.

        Raises:
            TransportError: as for fetch_feed, or when the service reports
                an error status for the search itself.
        """
        body = self._get(
            f"{self.base_url}/search/",
            params={"token": self.api_key, "keyword": keyword},
            endpoint="search",
            place=keyword,
        )
        if not isinstance(body, dict) or body.get("status") != "ok":
            detail = body.get("data") if isinstance(body, dict) else body
            raise TransportError(f"WAQI search failed for {keyword!r}: {detail}")
        return [_parse_station(item) for item in body.get("data") or [] if isinstance(item, dict)]

    def _get(self, url: str, params: Dict[str, str], endpoint: str, place: str) -> Any:
        """Make a single GET and return the parsed JSON body."""
        trace = get_trace()
        t0 = time.time()
        try:
            resp = requests.get(url, params=params, timeout=self.timeout)
        except requests.Timeout:
            elapsed_ms = int((time.time() - t0) * 1000)
            logger.warning("WAQI %s timed out for %r", endpoint, place)
            if trace:
                trace.record_api_call(
                    service="waqi",
                    endpoint=endpoint,
                    elapsed_ms=elapsed_ms,
                    status_code=0,
                    provider_status="timeout",
                    place=place,
                )
            raise TransportError(
                f"WAQI {endpoint} request timeout after {self.timeout}s for {place!r}"
            )
        except requests.RequestException as e:
            elapsed_ms = int((time.time() - t0) * 1000)
            if trace:
                trace.record_api_call(
                    service="waqi",
                    endpoint=endpoint,
                    elapsed_ms=elapsed_ms,
                    status_code=0,
                    provider_status="exception",
                    place=place,
                )
            raise TransportError(f"WAQI {endpoint} request failed for {place!r}: {e}") from e

        elapsed_ms = int((time.time() - t0) * 1000)

        if not resp.ok:
            if trace:
                trace.record_api_call(
                    service="waqi",
                    endpoint=endpoint,
                    elapsed_ms=elapsed_ms,
                    status_code=resp.status_code,
                    provider_status="http_error",
                    place=place,
                )
            raise TransportError(
                f"WAQI {endpoint} HTTP {resp.status_code} for {place!r}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError:
            if trace:
                trace.record_api_call(
                    service="waqi",
                    endpoint=endpoint,
                    elapsed_ms=elapsed_ms,
                    status_code=resp.status_code,
                    provider_status="parse_error",
                    place=place,
                )
            raise TransportError(
                f"WAQI {endpoint} returned non-JSON response (HTTP {resp.status_code}) for {place!r}",
                status_code=resp.status_code,
            )

        if trace:
            trace.record_api_call(
                service="waqi",
                endpoint=endpoint,
                elapsed_ms=elapsed_ms,
                status_code=resp.status_code,
                provider_status=str(body.get("status", "")) if isinstance(body, dict) else "",
                place=place,
            )
        return body


def _parse_station(item: Dict[str, Any]) -> StationMatch:
    station = item.get("station") or {}
    when = item.get("time") or {}
    geo = station.get("geo") or []
    lat = lon = None
    if len(geo) >= 2:
        try:
            lat, lon = float(geo[0]), float(geo[1])
        except (TypeError, ValueError):
            lat = lon = None
    return StationMatch(
        uid=int(item.get("uid", 0)),
        name=str(station.get("name", "")),
        aqi=str(item.get("aqi", "-")),
        lat=lat,
        lon=lon,
        url=str(station.get("url", "")),
        stime=str(when.get("stime", "")),
        tz=str(when.get("tz", "")),
    )


def search_stations(keyword: str, config: Optional[AQIConfig] = None) -> List[StationMatch]:
    """Search monitoring stations by keyword. Results are never cached."""
    return WAQIHTTPClient(config).search(keyword)
