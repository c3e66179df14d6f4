"""Turns a bare place id into a fully populated Restaurant."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Optional, Sequence, Tuple, TypeVar

from . import config
from .cache import ImageCache, image_uri_for
from .errors import DetailFetchError, PhotoFetchError
from .geo import distance_m
from .models import Coordinate, PlaceDetails, Restaurant, restaurant_from_details
from .places_client import PlaceLookupClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SkipReason(Enum):
    OUT_OF_RADIUS = "out_of_radius"


@dataclass(frozen=True)
class EnrichmentOutcome:
    restaurant: Optional[Restaurant] = None
    skip_reason: Optional[SkipReason] = None
    distance_m: Optional[float] = None
    photo_error: Optional[PhotoFetchError] = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None


class DetailEnricher:
    def __init__(
        self,
        client: PlaceLookupClient,
        image_cache: ImageCache,
        session_token: str,
        timeout: Optional[float] = config.BRANCH_TIMEOUT_SECONDS,
        fields: Sequence[str] = tuple(config.PLACES_DETAILS_FIELDS),
        photo_max_size: int = config.PHOTO_MAX_SIZE_PX,
    ) -> None:
        self.client = client
        self.image_cache = image_cache
        self.session_token = session_token
        self.timeout = timeout
        self.fields = fields
        self.photo_max_size = photo_max_size

    async def enrich(
        self,
        place_id: str,
        origin: Optional[Coordinate],
        radius_m: Optional[float] = None,
    ) -> EnrichmentOutcome:
        """Fetch details, apply the radius filter and attach an image.

        Raises DetailFetchError when the details lookup fails; photo failures
        degrade to the placeholder image and are reported on the outcome.
        """
        try:
            details = await self._bounded(
                self.client.fetch_details(place_id, self.fields, self.session_token)
            )
        except Exception as exc:
            raise DetailFetchError(place_id, exc) from exc

        distance: Optional[float] = None
        if origin is not None:
            distance = distance_m(origin, details.coordinate)
        if radius_m is not None and distance is not None and distance > radius_m:
            logger.debug(
                "Skipping %s - distance %dm exceeds radius %dm",
                details.name or place_id,
                int(distance),
                int(radius_m),
            )
            return EnrichmentOutcome(skip_reason=SkipReason.OUT_OF_RADIUS, distance_m=distance)

        restaurant = restaurant_from_details(
            details, config.FALLBACK_RESTAURANT_NAME, config.FALLBACK_CUISINE
        )
        image_url, photo_error = await self._resolve_image(place_id, details)
        return EnrichmentOutcome(
            restaurant=replace(restaurant, image_url=image_url),
            distance_m=distance,
            photo_error=photo_error,
        )

    async def _resolve_image(
        self, place_id: str, details: PlaceDetails
    ) -> Tuple[str, Optional[PhotoFetchError]]:
        if not details.photo_refs:
            return config.PLACEHOLDER_IMAGE_URI, None

        photo_ref = details.photo_refs[0]
        try:
            data = await self._bounded(self.client.fetch_photo(photo_ref, self.photo_max_size))
        except Exception as exc:
            error = PhotoFetchError(place_id, photo_ref, exc)
            logger.warning("%s", error)
            return config.PLACEHOLDER_IMAGE_URI, error

        if not data or not self.image_cache.put(place_id, data):
            logger.debug("No cacheable photo for %s", place_id)
            return config.PLACEHOLDER_IMAGE_URI, None
        return image_uri_for(place_id), None

    async def _bounded(self, call: Awaitable[T]) -> T:
        if self.timeout is None:
            return await call
        return await asyncio.wait_for(call, self.timeout)

