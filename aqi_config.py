"""
Runtime configuration for the AQI report service.

Everything the retrieval core reads is collected once at startup into
frozen dataclasses. Values come from environment variables (a local
.env file is loaded by the entry points via python-dotenv before
load_config() runs).

Environment:
  AQI_API_KEY          WAQI API token (default: the public "demo" token,
                       which only answers for a handful of cities)
  AQI_USE_CACHE        "true"/"1"/"yes" to reuse cached readings
  AQI_REFRESH_PERIOD   seconds, or "never" (declared, not enforced)
  AQI_BASE_URL         API root (default https://api.waqi.info)
  AQI_TIMEOUT          HTTP timeout in seconds (default 10)
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_API_KEY = "demo"
DEFAULT_BASE_URL = "https://api.waqi.info"
DEFAULT_TIMEOUT = 10  # seconds

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class CachePolicy:
    """Process-wide cache policy, read by the retrieval pipeline only.

    refresh_period is carried for callers that want to display it; the
    pipeline never expires entries on its own.
    """
    use_cache: bool = False
    refresh_period: Optional[timedelta] = None


@dataclass(frozen=True)
class AQIConfig:
    api_key: str = DEFAULT_API_KEY
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    policy: CachePolicy = field(default_factory=CachePolicy)


def _parse_bool(raw: Optional[str], default: bool = False) -> bool:
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


def parse_refresh_period(raw: Optional[str]) -> Optional[timedelta]:
    """Parse a refresh period in seconds; "never" or blank means None."""
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in ("", "never", "none"):
        return None
    try:
        seconds = float(value)
    except ValueError:
        logger.warning("Ignoring invalid AQI_REFRESH_PERIOD %r", raw)
        return None
    if seconds <= 0:
        return None
    return timedelta(seconds=seconds)


def load_config() -> AQIConfig:
    """Build an AQIConfig from the current environment."""
    timeout_raw = os.environ.get("AQI_TIMEOUT", "")
    try:
        timeout = float(timeout_raw) if timeout_raw.strip() else DEFAULT_TIMEOUT
    except ValueError:
        logger.warning("Ignoring invalid AQI_TIMEOUT %r", timeout_raw)
        timeout = DEFAULT_TIMEOUT

    return AQIConfig(
        api_key=os.environ.get("AQI_API_KEY", "").strip() or DEFAULT_API_KEY,
        base_url=(os.environ.get("AQI_BASE_URL", "").strip() or DEFAULT_BASE_URL).rstrip("/"),
        timeout=timeout,
        policy=CachePolicy(
            use_cache=_parse_bool(os.environ.get("AQI_USE_CACHE")),
            refresh_period=parse_refresh_period(os.environ.get("AQI_REFRESH_PERIOD")),
        ),
    )
