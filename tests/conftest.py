"""Shared fixtures for the AQI report test suite.

Provides a scripted fake transport (no network), a fresh default cache
store per test, and pipeline builders for both cache policies.
"""

import copy

import pytest

from aqi_config import CachePolicy
from cache_store import new_store, teardown
from retrieval import RetrievalPipeline, set_pipeline
from waqi_http import TransportError


TAIPEI_FEED = {
    "status": "ok",
    "data": {
        "aqi": 42,
        "idx": 1597,
        "dominentpol": "pm25",
        "city": {
            "name": "Taipei",
            "geo": [25.0330, 121.5654],
            "url": "https://aqicn.org/city/taiwan/taipei",
        },
        "iaqi": {
            "pm25": {"v": 42},
            "pm10": {"v": 18},
            "no2": {"v": 9.1},
            "co": {"v": 3.4},
            "t": {"v": 25},
            "h": {"v": 70},
            "p": {"v": 1012},
            "w": {"v": 3.5},
        },
        "time": {"s": "2024-03-01 14:00:00", "tz": "+08:00", "v": 1709301600},
        "attributions": [
            {"url": "https://airtw.moenv.gov.tw/", "name": "Taiwan Ministry of Environment"},
            {"url": "https://waqi.info/", "name": "World Air Quality Index Project"},
            {"name": "Third source that is never shown"},
        ],
    },
}

UNKNOWN_STATION = {"status": "error", "data": "Unknown station"}


def feed_for(name, aqi, **overrides):
    """Build a minimal ok feed body for a city."""
    body = copy.deepcopy(TAIPEI_FEED)
    body["data"]["city"]["name"] = name
    body["data"]["aqi"] = aqi
    body["data"].update(overrides)
    return body


class FakeTransport:
    """Scripted stand-in for WAQIHTTPClient.fetch_feed.

    responses maps place -> body dict, TransportError instance, or a list
    of those consumed one per call (the last one repeats).
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def fetch_feed(self, place):
        self.calls.append(place)
        response = self.responses.get(place, UNKNOWN_STATION)
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        return copy.deepcopy(response)

    def calls_for(self, place):
        return sum(1 for c in self.calls if c == place)


@pytest.fixture(autouse=True)
def _fresh_store(monkeypatch):
    """Every test starts with an empty default store and no shared pipeline."""
    for var in ("AQI_API_KEY", "AQI_USE_CACHE", "AQI_REFRESH_PERIOD", "AQI_BASE_URL", "AQI_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)
    store = new_store()
    set_pipeline(None)
    yield store
    set_pipeline(None)
    teardown()


@pytest.fixture()
def transport():
    return FakeTransport({
        "Taipei": TAIPEI_FEED,
        "Nowhere": UNKNOWN_STATION,
        "Offline": TransportError("connection refused"),
    })


@pytest.fixture()
def cached_pipeline(_fresh_store, transport):
    pipeline = RetrievalPipeline(
        store=_fresh_store, policy=CachePolicy(use_cache=True), transport=transport,
    )
    set_pipeline(pipeline)
    return pipeline


@pytest.fixture()
def live_pipeline(_fresh_store, transport):
    pipeline = RetrievalPipeline(
        store=_fresh_store, policy=CachePolicy(use_cache=False), transport=transport,
    )
    set_pipeline(pipeline)
    return pipeline
