"""Discovery pipeline orchestration."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar

from . import config
from .cache import ImageCache, shared_image_cache
from .dedup import RestaurantCollector, merge
from .enrichment import DetailEnricher
from .errors import (
    AutocompleteError,
    DetailFetchError,
    DiscoveryError,
    ProviderUnavailableError,
)
from .geo import bounding_box, distance_m, format_distance
from .http import HttpClient, RequestBudget, RequestMetrics
from .models import Coordinate, PlaceCandidate, Restaurant
from .places_client import (
    AutocompleteFilter,
    GooglePlacesClient,
    PlaceLookupClient,
    new_session_token,
)
from .ranking import BY_RATING, ByDistance, RankMode, rank

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DiscoveryStage(Enum):
    IDLE = "idle"
    AUTOCOMPLETE_FAN_OUT = "autocomplete_fan_out"
    MERGING = "merging"
    DETAIL_FAN_OUT = "detail_fan_out"
    RANKING = "ranking"
    DONE = "done"


@dataclass
class DiscoveryResult:
    restaurants: List[Restaurant]
    errors: List[DiscoveryError] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def error_count(self) -> int:
        return len(self.errors)


@dataclass
class _RunState:
    """Per-invocation bookkeeping; never shared between runs."""

    mode: str
    metrics: RequestMetrics
    stage: DiscoveryStage = DiscoveryStage.IDLE
    stages: List[str] = field(default_factory=list)
    # Appended only from coroutines on the event loop thread.
    errors: List[DiscoveryError] = field(default_factory=list)
    skipped_out_of_radius: int = 0

    def enter(self, stage: DiscoveryStage) -> None:
        logger.debug("%s discovery: %s -> %s", self.mode, self.stage.value, stage.value)
        self.stage = stage
        self.stages.append(stage.value)


class DiscoveryPipeline:
    """Finds restaurants by fanning a query corpus out to the places provider.

    Each call to run_nearby / run_countrywide is independent: it gets its own
    session token, request budget, metrics and result set. Only the image
    cache outlives a run.
    """

    def __init__(
        self,
        client: Optional[PlaceLookupClient] = None,
        api_key: Optional[str] = None,
        image_cache: Optional[ImageCache] = None,
        max_requests: Optional[int] = None,
        branch_timeout: Optional[float] = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ProviderUnavailableError("API key is required when using the real Places client")
            http_client = HttpClient(
                api_key,
                timeout=config.HTTP_TIMEOUT_SECONDS,
                retry_max=config.HTTP_RETRY_MAX,
                backoff_base=config.HTTP_BACKOFF_BASE,
                backoff_max=config.HTTP_BACKOFF_MAX,
            )
            client = GooglePlacesClient(http_client)
        self.client = client
        self.image_cache = image_cache if image_cache is not None else shared_image_cache()
        self.max_requests = max_requests
        self.branch_timeout = branch_timeout

    async def discover_nearby(self, origin: Coordinate, radius_m: float) -> List[Restaurant]:
        return (await self.run_nearby(origin, radius_m)).restaurants

    async def discover_countrywide(self, country_code: str) -> List[Restaurant]:
        return (await self.run_countrywide(country_code)).restaurants

    async def discover(
        self,
        origin: Optional[Coordinate] = None,
        radius_m: Optional[float] = None,
        country_code: Optional[str] = None,
    ) -> List[Restaurant]:
        """Nearby search when a location is known, country-wide otherwise."""
        if origin is not None:
            radius = radius_m if radius_m is not None else config.DEFAULT_RADIUS_M
            return await self.discover_nearby(origin, radius)
        return await self.discover_countrywide(country_code or config.DEFAULT_COUNTRY_CODE)

    async def run_nearby(self, origin: Coordinate, radius_m: float) -> DiscoveryResult:
        if radius_m is None or radius_m <= 0:
            raise ValueError("radius_m must be positive")
        search_filter = AutocompleteFilter(
            categories=tuple(config.SEARCH_CATEGORIES),
            location_bias=bounding_box(origin, radius_m),
        )
        logger.info(
            "Searching restaurants near %.5f,%.5f within %dm",
            origin.latitude,
            origin.longitude,
            int(radius_m),
        )
        result = await self._run(
            "nearby",
            list(config.NEARBY_QUERIES),
            search_filter,
            ByDistance(origin),
            origin=origin,
            radius_m=radius_m,
        )
        result.summary["radius_m"] = radius_m
        return result

    async def run_countrywide(self, country_code: str) -> DiscoveryResult:
        code = (country_code or "").strip().upper()
        if not code:
            raise ValueError("country_code is required")
        search_filter = AutocompleteFilter(
            categories=tuple(config.SEARCH_CATEGORIES),
            country_code=code,
        )
        logger.info("Starting country-wide search in %s", code)
        result = await self._run(
            "countrywide",
            list(config.COUNTRYWIDE_QUERIES),
            search_filter,
            BY_RATING,
        )
        result.summary["country_code"] = code
        return result

    async def _run(
        self,
        mode: str,
        queries: Sequence[str],
        search_filter: AutocompleteFilter,
        rank_mode: RankMode,
        origin: Optional[Coordinate] = None,
        radius_m: Optional[float] = None,
    ) -> DiscoveryResult:
        metrics = RequestMetrics()
        state = _RunState(mode=mode, metrics=metrics)
        client = self._client_for_run(metrics)
        session_token = new_session_token()
        timeout = self._timeout()

        state.enter(DiscoveryStage.AUTOCOMPLETE_FAN_OUT)

        async def search(query: str) -> List[PlaceCandidate]:
            try:
                hits = await _bounded(
                    client.autocomplete(query, search_filter, session_token), timeout
                )
            except Exception as exc:
                error = AutocompleteError(query, exc)
                logger.warning("%s", error)
                state.errors.append(error)
                metrics.inc_error("autocomplete")
                return []
            logger.debug("Found %d predictions for %r", len(hits), query)
            return hits

        branches = [asyncio.ensure_future(search(q)) for q in queries]

        # Every query is in flight; fold each hit list in as its branch completes.
        state.enter(DiscoveryStage.MERGING)
        candidates = await merge(branches)
        logger.info("Total unique places found: %d", len(candidates))

        state.enter(DiscoveryStage.DETAIL_FAN_OUT)
        enricher = DetailEnricher(
            client,
            self.image_cache,
            session_token,
            timeout=timeout,
        )
        collector = RestaurantCollector()

        async def enrich(candidate: PlaceCandidate) -> None:
            try:
                outcome = await enricher.enrich(candidate.place_id, origin, radius_m)
            except DetailFetchError as error:
                logger.warning("%s", error)
                state.errors.append(error)
                metrics.inc_error("details")
                return
            if outcome.photo_error is not None:
                state.errors.append(outcome.photo_error)
                metrics.inc_error("photos")
            if outcome.skipped:
                state.skipped_out_of_radius += 1
                return
            await collector.add(outcome.restaurant)

        settled = await asyncio.gather(
            *(enrich(c) for c in candidates), return_exceptions=True
        )
        for item in settled:
            if isinstance(item, BaseException):
                raise item

        state.enter(DiscoveryStage.RANKING)
        restaurants = rank(collector.snapshot(), rank_mode)
        state.enter(DiscoveryStage.DONE)

        summary = build_summary(state, len(queries), len(candidates), restaurants)
        logger.info(
            "Completed %s discovery: %d restaurants, %d errors",
            mode,
            len(restaurants),
            len(state.errors),
        )
        if state.errors:
            logger.debug("Encountered %d errors while discovering restaurants", len(state.errors))
        return DiscoveryResult(restaurants=restaurants, errors=list(state.errors), summary=summary)

    def _client_for_run(self, metrics: RequestMetrics) -> PlaceLookupClient:
        """Client view that charges this run's own request budget."""
        max_requests = self.max_requests if self.max_requests is not None else config.MAX_REQUESTS_PER_RUN
        budget = RequestBudget(max_requests=max_requests, metrics=metrics)
        with_budget = getattr(self.client, "with_budget", None)
        if callable(with_budget):
            return with_budget(budget)
        return self.client

    def _timeout(self) -> Optional[float]:
        if self.branch_timeout is not None:
            return self.branch_timeout if self.branch_timeout > 0 else None
        return config.BRANCH_TIMEOUT_SECONDS


async def _bounded(call: Awaitable[T], timeout: Optional[float]) -> T:
    if timeout is None:
        return await call
    return await asyncio.wait_for(call, timeout)


def build_summary(
    state: _RunState,
    query_count: int,
    candidate_count: int,
    restaurants: List[Restaurant],
) -> Dict[str, Any]:
    return {
        "mode": state.mode,
        "queries": query_count,
        "unique_candidates": candidate_count,
        "restaurants": len(restaurants),
        "skipped_out_of_radius": state.skipped_out_of_radius,
        "autocomplete_errors": state.metrics.errors["autocomplete"],
        "detail_errors": state.metrics.errors["details"],
        "photo_errors": state.metrics.errors["photos"],
        "requests": dict(state.metrics.network),
        "stages": list(state.stages),
    }


def render_summary(
    summary: Dict[str, Any],
    restaurants: Sequence[Restaurant] = (),
    origin: Optional[Coordinate] = None,
    top_n: int = 10,
) -> List[str]:
    lines: List[str] = []
    lines.append(f"Mode: {summary.get('mode')}")
    if summary.get("radius_m") is not None:
        lines.append(f"Radius: {int(summary['radius_m'])}m")
    if summary.get("country_code"):
        lines.append(f"Country: {summary['country_code']}")
    lines.append(f"Queries issued: {summary.get('queries', 0)}")
    lines.append(f"Unique candidates: {summary.get('unique_candidates', 0)}")
    lines.append(f"Restaurants: {summary.get('restaurants', 0)}")
    lines.append(f"Skipped (out of radius): {summary.get('skipped_out_of_radius', 0)}")
    lines.append(
        "Errors: "
        f"autocomplete={summary.get('autocomplete_errors', 0)} "
        f"details={summary.get('detail_errors', 0)} "
        f"photos={summary.get('photo_errors', 0)}"
    )
    requests_by_kind = summary.get("requests") or {}
    if requests_by_kind:
        parts = " ".join(f"{k}={v}" for k, v in requests_by_kind.items())
        lines.append(f"Requests (network): {parts}")

    if restaurants:
        lines.append("Top results:")
        for idx, r in enumerate(restaurants[:top_n], start=1):
            if origin is not None:
                detail = format_distance(distance_m(origin, r.coordinate))
            else:
                detail = f"rating {r.formatted_rating}"
            lines.append(f"{idx}. {r.name} ({r.cuisine}) - {detail}")
    return lines
