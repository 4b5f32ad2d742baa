"""
Retrieval pipeline: decides whether a place needs a fresh WAQI fetch,
and commits whatever comes back into the cache store.

Policy (CachePolicy from aqi_config):
- use_cache=False: every resolve() fetches and overwrites the entry.
- use_cache=True:  fetch only when the store has no entry for the place;
  otherwise return the stored entry unchanged. refresh_period is not
  consulted here; a stale hit stays until it is cleared.

Outcomes of a fetch:
- status "ok"        -> Reading stored
- any other status   -> Fault stored (the service's message is kept)
- TransportError     -> nothing stored, one warning logged, prior entry kept

The check-absent / fetch / store sequence for one place runs under a
per-place lock so concurrent requests (gunicorn threads) do not fetch
the same place twice.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Protocol

from aqi_config import AQIConfig, CachePolicy, load_config
from aqi_trace import get_trace
from cache_store import CacheEntry, CacheStore, Fault, Reading, get_store
from waqi_http import HERE, TransportError, WAQIHTTPClient

logger = logging.getLogger(__name__)

MALFORMED_PAYLOAD = "Malformed feed payload"


class FeedTransport(Protocol):
    def fetch_feed(self, place: str) -> Dict[str, Any]:
        ...


def normalize_place(place: Optional[str]) -> str:
    """Empty or missing place means the caller's own location."""
    if place is None or place == "":
        return HERE
    return place


def entry_from_body(place: str, body: Dict[str, Any]) -> CacheEntry:
    """Convert a parsed feed body into the entry to cache."""
    status = body.get("status")
    data = body.get("data")
    if status == "ok":
        if isinstance(data, dict):
            return Reading.from_feed(place, data)
        logger.warning("WAQI returned status ok with a non-object payload for %r", place)
        return Fault(place=place, message=MALFORMED_PAYLOAD)
    if isinstance(data, dict):
        message = str(data.get("message") or data.get("msg") or data)
    elif data is None:
        message = f"status {status!r}"
    else:
        message = str(data)
    return Fault(place=place, message=message)


class RetrievalPipeline:
    def __init__(
        self,
        store: Optional[CacheStore] = None,
        policy: Optional[CachePolicy] = None,
        transport: Optional[FeedTransport] = None,
        config: Optional[AQIConfig] = None,
    ):
        config = config or load_config()
        self._store = store
        self.policy = policy if policy is not None else config.policy
        self.transport = transport if transport is not None else WAQIHTTPClient(config)
        self._locks_guard = threading.Lock()
        # place -> [lock, number of callers holding or waiting on it]
        self._place_locks: Dict[str, List[Any]] = {}

    @property
    def store(self) -> CacheStore:
        """The injected store, or the current process-wide default."""
        return self._store if self._store is not None else get_store()

    @contextmanager
    def _locked(self, place: str) -> Iterator[None]:
        """Hold the per-place lock; the entry is dropped once nobody needs it."""
        with self._locks_guard:
            slot = self._place_locks.get(place)
            if slot is None:
                slot = self._place_locks[place] = [threading.Lock(), 0]
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._locks_guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._place_locks[place]

    def resolve(self, place: Optional[str] = None, policy: Optional[CachePolicy] = None) -> Optional[CacheEntry]:
        """Return the cache entry for a place, fetching first if policy requires.

        Returns None only when the fetch failed at the transport level and
        nothing was cached for the place before.
        """
        place = normalize_place(place)
        policy = policy or self.policy
        store = self.store

        with self._locked(place):
            if policy.use_cache:
                cached = store.get(place)
                if cached is not None:
                    trace = get_trace()
                    if trace:
                        trace.record_api_call(
                            service="waqi",
                            endpoint="feed",
                            elapsed_ms=0,
                            status_code=200,
                            provider_status="cache_hit",
                            place=place,
                        )
                    return cached

            self._fetch_and_store(store, place)
            return store.get(place)

    def _fetch_and_store(self, store: CacheStore, place: str) -> None:
        t0 = time.time()
        try:
            body = self.transport.fetch_feed(place)
        except TransportError as e:
            logger.warning("AQI fetch for %r failed; cache left unchanged: %s", place, e)
            return

        entry = entry_from_body(place, body)
        store.put(place, entry)
        if entry.kind == "fault":
            logger.info("WAQI reported an error for %r: %s", place, entry.message)
        else:
            logger.info(
                "Fetched AQI reading for %r in %dms",
                place, int((time.time() - t0) * 1000),
            )

    def clear(self, place: Optional[str] = None) -> None:
        """Evict one place (or everything) so the next resolve() refetches."""
        self.store.clear(place)


# Module-level singleton; all callers in this process share one instance
_pipeline: Optional[RetrievalPipeline] = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> RetrievalPipeline:
    """Return the process-wide pipeline, building it from the environment on first use."""
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = RetrievalPipeline()
        return _pipeline


def set_pipeline(pipeline: Optional[RetrievalPipeline]) -> None:
    """Replace the process-wide pipeline (None rebuilds it on next use)."""
    global _pipeline
    with _pipeline_lock:
        _pipeline = pipeline


def resolve(place: Optional[str] = None, policy: Optional[CachePolicy] = None) -> Optional[CacheEntry]:
    """Module-level convenience function for the shared pipeline."""
    return get_pipeline().resolve(place, policy)
