#!/usr/bin/env python3
"""
Command-line air quality reports.

Usage:
  aqi                          # full report for your current location
  aqi Taipei --type brief      # one-line report
  aqi @1451 --index            # just the index, as a number
  aqi 25.03,121.56 --lonlat    # coordinates of the nearest station
  aqi --search "san francisco" # candidate stations (uid, aqi, name)

Configuration is read from the environment / .env (see aqi_config.py);
--api-key and --cache/--no-cache override it for one run.

Exit codes:
  0 = report printed
  1 = requested field not available (fault, failed fetch, missing field)
  2 = usage error
"""

import argparse
import logging
import sys
import uuid
from dataclasses import replace
from typing import List, Optional

from dotenv import load_dotenv

from accessors import city_aqi, city_lonlat
from aqi_config import AQIConfig, load_config
from aqi_trace import TraceContext, clear_trace, set_trace
from cache_store import MissingFieldError
from report import report
from retrieval import RetrievalPipeline
from waqi_http import TransportError, search_stations

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aqi",
        description="Current air quality from the World Air Quality Index project",
    )
    parser.add_argument(
        "place", nargs="?", default="",
        help='City name, station id ("@1451"), "lat,lon", or empty for your location.',
    )
    parser.add_argument(
        "--type", dest="report_type", default="full",
        help="Report type: brief or full (default: full).",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--index", action="store_true",
        help="Print only the numeric air quality index.",
    )
    mode.add_argument(
        "--lonlat", action="store_true",
        help='Print only the station coordinates as "lat, lon".',
    )
    mode.add_argument(
        "--search", metavar="KEYWORD",
        help="List stations matching KEYWORD instead of reporting.",
    )
    parser.add_argument(
        "--api-key", type=str, default="",
        help="WAQI token (default: AQI_API_KEY or the public demo token).",
    )
    parser.add_argument(
        "--cache", dest="use_cache", action=argparse.BooleanOptionalAction, default=None,
        help="Reuse cached readings within this run (default: AQI_USE_CACHE).",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Log API calls and cache decisions to stderr.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    config = load_config()
    if args.api_key:
        config = replace(config, api_key=args.api_key)
    if args.use_cache is not None:
        config = replace(config, policy=replace(config.policy, use_cache=args.use_cache))

    ctx = TraceContext(trace_id=uuid.uuid4().hex[:8])
    set_trace(ctx)
    try:
        if args.search is not None:
            return _print_search(args.search, config)

        pipeline = RetrievalPipeline(config=config)
        try:
            if args.index:
                print(city_aqi(args.place, pipeline=pipeline))
            elif args.lonlat:
                print(city_lonlat(args.place, pipeline=pipeline))
            else:
                print(report(args.place, args.report_type, pipeline=pipeline))
        except MissingFieldError as e:
            print(f"aqi: {e}", file=sys.stderr)
            return 1
        return 0
    finally:
        ctx.log_summary()
        clear_trace()


def _print_search(keyword: str, config: AQIConfig) -> int:
    try:
        matches = search_stations(keyword, config)
    except TransportError as e:
        print(f"aqi: {e}", file=sys.stderr)
        return 1
    if not matches:
        print(f"No stations match {keyword!r}")
        return 0
    for m in matches:
        print(f"{m.place_key:<10} {m.aqi:>4}  {m.name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
