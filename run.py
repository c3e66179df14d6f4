"""CLI entrypoint."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from restaurant_finder import config
from restaurant_finder.errors import ProviderUnavailableError
from restaurant_finder.geo import distance_m
from restaurant_finder.models import Coordinate
from restaurant_finder.pipeline import DiscoveryPipeline, DiscoveryResult, render_summary
from restaurant_finder.ranking import filter_restaurants
from restaurant_finder.reporting import (
    ensure_dir,
    restaurant_rows,
    write_results_csv,
    write_results_json,
    write_summary,
)


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    load_dotenv(dotenv_path=env_path, override=False)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Discover restaurants using Google Places")
    parser.add_argument("--lat", type=float, default=None, help="Origin latitude (nearby mode)")
    parser.add_argument("--lon", type=float, default=None, help="Origin longitude (nearby mode)")
    parser.add_argument(
        "--radius-m",
        type=float,
        default=None,
        help="Search radius in meters (default: config DEFAULT_RADIUS_M)",
    )
    parser.add_argument(
        "--country",
        type=str,
        default=None,
        help="Country code for country-wide mode, used when no origin is given",
    )
    parser.add_argument("--search", type=str, default=None, help="Filter results by name, cuisine or address")
    parser.add_argument("--config", type=str, default=None, help="Path to search_config.json")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Time limit in seconds for each autocomplete, details or photo branch (0 disables)",
    )
    parser.add_argument("--max-requests", type=int, default=None)
    parser.add_argument("--top", type=int, default=10, help="Rows shown in the printed summary")
    parser.add_argument("--out", type=str, default=config.OUTPUT_DIR)
    parser.add_argument("--no-write", action="store_true", help="Print the summary only")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)
    if (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be given together")
    return args


def write_outputs(out_dir: str, result: DiscoveryResult, lines: List[str], origin: Optional[Coordinate]) -> None:
    ensure_dir(out_dir)
    distances: Optional[Dict[str, float]] = None
    if origin is not None:
        distances = {r.id: distance_m(origin, r.coordinate) for r in result.restaurants}
    rows = restaurant_rows(result.restaurants, distances)
    write_results_json(os.path.join(out_dir, "results.json"), rows)
    write_results_csv(os.path.join(out_dir, "results.csv"), rows)
    write_summary(os.path.join(out_dir, "summary.txt"), lines)


async def discover(args: argparse.Namespace, pipeline: DiscoveryPipeline) -> DiscoveryResult:
    if args.lat is not None:
        origin = Coordinate(latitude=args.lat, longitude=args.lon)
        radius = args.radius_m if args.radius_m is not None else config.DEFAULT_RADIUS_M
        return await pipeline.run_nearby(origin, radius)
    return await pipeline.run_countrywide(args.country or config.DEFAULT_COUNTRY_CODE)


def main(argv: Optional[List[str]] = None) -> int:
    load_env()
    args = parse_args(argv)
    config.load_search_config(args.config)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    api_key = os.environ.get(config.API_KEY_ENV)
    try:
        pipeline = DiscoveryPipeline(
            api_key=api_key,
            max_requests=args.max_requests,
            branch_timeout=args.timeout,
        )
    except ProviderUnavailableError:
        print(f"Missing {config.API_KEY_ENV} in environment", file=sys.stderr)
        return 1

    try:
        result = asyncio.run(discover(args, pipeline))
    except (ProviderUnavailableError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    origin = Coordinate(args.lat, args.lon) if args.lat is not None else None
    if args.search:
        result.restaurants = filter_restaurants(result.restaurants, args.search)
        result.summary["restaurants"] = len(result.restaurants)

    lines = render_summary(result.summary, result.restaurants, origin=origin, top_n=args.top)
    for line in lines:
        print(line)

    if not args.no_write:
        write_outputs(args.out, result, lines, origin)
        print(f"Done. Results written to {args.out}/results.csv and {args.out}/results.json")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
