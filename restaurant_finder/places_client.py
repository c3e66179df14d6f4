"""Places API client and response parsing."""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
from urllib.parse import quote

from . import config
from .http import HttpClient, RequestBudget, RequestMetrics
from .models import Coordinate, PlaceCandidate, PlaceDetails, PriceLevel


@dataclass(frozen=True)
class AutocompleteFilter:
    categories: Tuple[str, ...]
    country_code: Optional[str] = None
    location_bias: Optional[Dict[str, float]] = None


class PlaceLookupClient(Protocol):
    async def autocomplete(
        self, query: str, search_filter: AutocompleteFilter, session_token: str
    ) -> List[PlaceCandidate]:
        ...

    async def fetch_details(
        self, place_id: str, fields: Sequence[str], session_token: str
    ) -> PlaceDetails:
        ...

    async def fetch_photo(self, photo_ref: str, max_size: int) -> bytes:
        ...


def new_session_token() -> str:
    return str(uuid.uuid4())


class GooglePlacesClient:
    """Async adapter over the Places API (New).

    Requests go through the blocking HttpClient on a worker thread so that
    concurrent branches never block the event loop.
    """

    def __init__(
        self,
        http_client: HttpClient,
        budget: Optional[RequestBudget] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.http = http_client
        self.budget = budget
        self.metrics = metrics

    def with_budget(self, budget: RequestBudget) -> "GooglePlacesClient":
        """Return a client over the same HTTP client, charging only this budget."""
        return GooglePlacesClient(self.http, budget=budget, metrics=budget.metrics)

    async def autocomplete(
        self, query: str, search_filter: AutocompleteFilter, session_token: str
    ) -> List[PlaceCandidate]:
        return await asyncio.to_thread(self._autocomplete, query, search_filter, session_token)

    async def fetch_details(
        self, place_id: str, fields: Sequence[str], session_token: str
    ) -> PlaceDetails:
        return await asyncio.to_thread(self._fetch_details, place_id, fields, session_token)

    async def fetch_photo(self, photo_ref: str, max_size: int) -> bytes:
        return await asyncio.to_thread(self._fetch_photo, photo_ref, max_size)

    def _autocomplete(
        self, query: str, search_filter: AutocompleteFilter, session_token: str
    ) -> List[PlaceCandidate]:
        body = build_autocomplete_body(query, search_filter, session_token)
        self._consume("autocomplete")
        response = self.http.post_json(
            config.PLACES_AUTOCOMPLETE_URL, body, config.PLACES_AUTOCOMPLETE_FIELD_MASK
        )
        return parse_autocomplete_response(response)

    def _fetch_details(
        self, place_id: str, fields: Sequence[str], session_token: str
    ) -> PlaceDetails:
        url = config.PLACES_DETAILS_URL.format(place_id=quote(place_id, safe=""))
        self._consume("details")
        payload = self.http.get_json(
            url, ",".join(fields), params={"sessionToken": session_token}
        )
        return parse_place_details(payload, place_id)

    def _fetch_photo(self, photo_ref: str, max_size: int) -> bytes:
        url = config.PLACES_PHOTO_MEDIA_URL.format(photo_name=photo_ref)
        self._consume("photos")
        return self.http.get_bytes(
            url, params={"maxWidthPx": int(max_size), "maxHeightPx": int(max_size)}
        )

    def _consume(self, kind: str) -> None:
        if self.budget is not None:
            self.budget.consume(kind)
        elif self.metrics is not None:
            self.metrics.inc_network(kind)


def build_autocomplete_body(
    query: str, search_filter: AutocompleteFilter, session_token: str
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "input": query,
        "sessionToken": session_token,
    }
    if search_filter.categories:
        body["includedPrimaryTypes"] = list(search_filter.categories)
    if search_filter.country_code:
        body["includedRegionCodes"] = [search_filter.country_code.lower()]
    bbox = search_filter.location_bias
    if bbox:
        body["locationBias"] = {
            "rectangle": {
                "low": {"latitude": bbox["lat_min"], "longitude": bbox["lon_min"]},
                "high": {"latitude": bbox["lat_max"], "longitude": bbox["lon_max"]},
            }
        }
    return body


# Adapter/mapper for Places response fields

_PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": PriceLevel.FREE,
    "PRICE_LEVEL_INEXPENSIVE": PriceLevel.CHEAP,
    "PRICE_LEVEL_MODERATE": PriceLevel.MEDIUM,
    "PRICE_LEVEL_EXPENSIVE": PriceLevel.HIGH,
    "PRICE_LEVEL_VERY_EXPENSIVE": PriceLevel.EXPENSIVE,
    "PRICE_LEVEL_UNSPECIFIED": PriceLevel.UNKNOWN,
}


def parse_price_level(value: Any) -> Optional[PriceLevel]:
    if value is None:
        return None
    if isinstance(value, int):
        # Legacy API encodes price level as 0..4.
        ordered = [
            PriceLevel.FREE,
            PriceLevel.CHEAP,
            PriceLevel.MEDIUM,
            PriceLevel.HIGH,
            PriceLevel.EXPENSIVE,
        ]
        return ordered[value] if 0 <= value < len(ordered) else PriceLevel.UNKNOWN
    return _PRICE_LEVELS.get(str(value), PriceLevel.UNKNOWN)


def parse_autocomplete_response(response: Dict[str, Any]) -> List[PlaceCandidate]:
    suggestions = response.get("suggestions") or []
    parsed: List[PlaceCandidate] = []
    for s in suggestions:
        prediction = s.get("placePrediction") or {}
        place_id = prediction.get("placeId") or prediction.get("place_id")
        if not place_id:
            continue
        parsed.append(PlaceCandidate(place_id=place_id))
    return parsed


def parse_place_details(payload: Dict[str, Any], place_id: str) -> PlaceDetails:
    location = payload.get("location") or payload.get("latLng") or {}
    lat = location.get("latitude", location.get("lat"))
    lon = location.get("longitude", location.get("lng"))
    if lat is None or lon is None:
        raise ValueError(f"Place {place_id} has no location")

    display = payload.get("displayName")
    if isinstance(display, dict):
        name = display.get("text")
    else:
        name = display

    rating = payload.get("rating")
    phone = payload.get("nationalPhoneNumber") or payload.get("internationalPhoneNumber")
    photos = payload.get("photos") or []
    photo_refs = tuple(p["name"] for p in photos if isinstance(p, dict) and p.get("name"))

    return PlaceDetails(
        place_id=payload.get("id") or place_id,
        coordinate=Coordinate(latitude=float(lat), longitude=float(lon)),
        name=name or None,
        address=payload.get("formattedAddress"),
        phone_number=phone,
        rating=float(rating) if rating is not None else None,
        price_level=parse_price_level(payload.get("priceLevel")),
        category_tags=tuple(payload.get("types") or ()),
        photo_refs=photo_refs,
    )
