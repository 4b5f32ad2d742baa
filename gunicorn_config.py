"""
Gunicorn config for the AQI report app.

when_ready logs the effective cache policy and then runs the post-deploy
smoke test against localhost. The cache store is per worker process, so
each worker warms its own cache; the smoke test's brief report for
SMOKE_PLACE only warms the worker that serves it.
"""

import logging
import os
import threading
import time

from aqi_config import DEFAULT_API_KEY, load_config

SMOKE_DELAY_SECONDS = 2


def log_startup_policy(logger: logging.Logger) -> None:
    config = load_config()
    policy = config.policy
    refresh = (
        f"{int(policy.refresh_period.total_seconds())}s" if policy.refresh_period else "never"
    )
    logger.info(
        "AQI app ready: base_url=%s use_cache=%s refresh_period=%s timeout=%ss",
        config.base_url, policy.use_cache, refresh, config.timeout,
    )
    if config.api_key == DEFAULT_API_KEY:
        logger.warning(
            "AQI_API_KEY not set; the %r token only answers for a few cities", DEFAULT_API_KEY,
        )


def when_ready(server):
    """Log the cache policy, then smoke-test the app in a background thread."""
    logger = logging.getLogger("gunicorn.error")
    log_startup_policy(logger)
    base_url = f"http://127.0.0.1:{os.environ.get('PORT', '8000')}"

    def _run_smoke():
        time.sleep(SMOKE_DELAY_SECONDS)
        from smoke_test import SMOKE_PLACE, run_tests
        logger.info("Smoke test: brief report for %r via %s", SMOKE_PLACE, base_url)
        try:
            ok = run_tests(base_url)
        except Exception:
            logger.exception("Smoke test for %r crashed", SMOKE_PLACE)
            return
        if ok:
            logger.info("Smoke test for %r passed", SMOKE_PLACE)
        else:
            logger.error("Smoke test for %r failed", SMOKE_PLACE)

    threading.Thread(target=_run_smoke, name="aqi-smoke", daemon=True).start()
