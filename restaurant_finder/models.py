"""Core data models shared by the discovery pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


class PriceLevel(Enum):
    FREE = "free"
    CHEAP = "cheap"
    MEDIUM = "medium"
    HIGH = "high"
    EXPENSIVE = "expensive"
    UNKNOWN = "unknown"


_PRICE_LEVEL_LABELS = {
    PriceLevel.FREE: "Free",
    PriceLevel.CHEAP: "$",
    PriceLevel.MEDIUM: "$$",
    PriceLevel.HIGH: "$$$",
    PriceLevel.EXPENSIVE: "$$$$",
    PriceLevel.UNKNOWN: "N/A",
}


@dataclass(frozen=True)
class PlaceCandidate:
    """Place identifier returned by one autocomplete query."""

    place_id: str


@dataclass(frozen=True)
class PlaceDetails:
    """Normalized snapshot of a Places details response."""

    place_id: str
    coordinate: Coordinate
    name: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None
    rating: Optional[float] = None
    price_level: Optional[PriceLevel] = None
    category_tags: Tuple[str, ...] = ()
    photo_refs: Tuple[str, ...] = ()


@dataclass(frozen=True, eq=False)
class Restaurant:
    """Immutable restaurant record; identity is the provider place id."""

    id: str
    name: str
    cuisine: str
    coordinate: Coordinate
    description: Optional[str] = None
    rating: Optional[float] = None
    price_level: Optional[PriceLevel] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    image_url: Optional[str] = None
    category_tags: Tuple[str, ...] = ()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Restaurant):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def formatted_price_level(self) -> str:
        if self.price_level is None:
            return "N/A"
        return _PRICE_LEVEL_LABELS.get(self.price_level, "N/A")

    @property
    def formatted_rating(self) -> str:
        if self.rating is None:
            return "N/A"
        return f"{self.rating:.1f}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "cuisine": self.cuisine,
            "rating": self.rating,
            "price_level": self.price_level.value if self.price_level else None,
            "phone_number": self.phone_number,
            "address": self.address,
            "lat": self.coordinate.latitude,
            "lon": self.coordinate.longitude,
            "image_url": self.image_url,
            "category_tags": list(self.category_tags),
        }


def restaurant_from_details(
    details: PlaceDetails,
    fallback_name: str,
    fallback_cuisine: str,
    image_url: Optional[str] = None,
) -> Restaurant:
    tags: List[str] = list(details.category_tags)
    return Restaurant(
        id=details.place_id,
        name=details.name or fallback_name,
        description=", ".join(tags) if tags else None,
        cuisine=tags[0] if tags else fallback_cuisine,
        rating=details.rating,
        price_level=details.price_level,
        phone_number=details.phone_number,
        address=details.address,
        coordinate=details.coordinate,
        image_url=image_url,
        category_tags=tuple(tags),
    )
