import os
import logging
import uuid
from dataclasses import asdict

from flask import Flask, request, jsonify, g, Response
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

from aqi_trace import TraceContext, get_trace, set_trace, clear_trace
from accessors import city_aqi, city_lonlat
from cache_store import MissingFieldError, entries_summary
from report import report, UsageError
from retrieval import get_pipeline
from waqi_http import TransportError, search_stations

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking, gated on SENTRY_DSN (silent when unset)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    def _sentry_before_send(event, hint):
        """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            # WAQI unreachable / timed out
            if exc_type is not None and issubclass(exc_type, TransportError):
                sentry_sdk.add_breadcrumb(
                    category="waqi",
                    message=msg,
                    level="warning",
                )
                return None
            # Lookup failures come from caller input
            if exc_type is not None and issubclass(exc_type, (MissingFieldError, UsageError)):
                sentry_sdk.add_breadcrumb(
                    category="lookup",
                    message=msg,
                    level="info",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("RAILWAY_GIT_COMMIT_SHA"),
        environment=os.environ.get("RAILWAY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)

# Proxy fix: behind a reverse proxy, request.remote_addr is the proxy.
# ProxyFix rewrites it from X-Forwarded-For so logs show the client.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request ID + trace: every request gets a unique ID and its own trace
# ---------------------------------------------------------------------------
def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()
    set_trace(TraceContext(trace_id=g.request_id))


@app.after_request
def _after_request(response):
    response.headers["X-Request-ID"] = getattr(g, "request_id", "")
    return response


@app.teardown_request
def _finish_trace(exc):
    trace = get_trace()
    if trace and trace.api_calls:
        trace.log_summary()
    clear_trace()


@app.errorhandler(MissingFieldError)
def _missing_field(e):
    return jsonify({
        "error": str(e),
        "place": e.place,
        "request_id": getattr(g, "request_id", "unknown"),
    }), 404


@app.errorhandler(UsageError)
def _usage_error(e):
    return jsonify({
        "error": str(e),
        "request_id": getattr(g, "request_id", "unknown"),
    }), 400


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.route("/api/report")
def api_report():
    """Brief or full text report. ?place=<key>&type=brief|full"""
    place = request.args.get("place", "")
    report_type = request.args.get("type")
    text = report(place, report_type)
    return Response(text + "\n", mimetype="text/plain")


@app.route("/api/aqi", defaults={"place": ""})
@app.route("/api/aqi/<path:place>")
def api_aqi(place):
    return jsonify({"place": place or "here", "aqi": city_aqi(place)})


@app.route("/api/lonlat", defaults={"place": ""})
@app.route("/api/lonlat/<path:place>")
def api_lonlat(place):
    return jsonify({"place": place or "here", "lonlat": city_lonlat(place)})


@app.route("/api/search")
def api_search():
    """Station search by keyword. Never cached."""
    keyword = request.args.get("keyword", "").strip()
    if not keyword:
        raise UsageError("keyword query parameter is required")
    try:
        matches = search_stations(keyword)
    except TransportError as e:
        logger.warning("[%s] Station search failed: %s", g.request_id, e)
        return jsonify({"error": "Station search unavailable", "request_id": g.request_id}), 502
    return jsonify({
        "keyword": keyword,
        "stations": [dict(asdict(m), place=m.place_key) for m in matches],
    })


@app.route("/api/cache", defaults={"place": None}, methods=["DELETE"])
@app.route("/api/cache/<path:place>", methods=["DELETE"])
def api_clear_cache(place):
    """Evict one place (or everything) so the next lookup refetches."""
    get_pipeline().clear(place)
    logger.info("[%s] Cache cleared for %s", g.request_id, place or "all places")
    return jsonify({"cleared": place or "all"})


@app.route("/healthz")
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    pipeline = get_pipeline()
    refresh = pipeline.policy.refresh_period
    return jsonify({
        "status": "ok",
        "use_cache": pipeline.policy.use_cache,
        "refresh_period_seconds": refresh.total_seconds() if refresh else None,
        "cached_places": len(pipeline.store),
        "entries": entries_summary(pipeline.store),
    })


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
