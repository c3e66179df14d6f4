"""Ordering and filtering of discovered restaurants."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from .geo import distance_m
from .models import Coordinate, Restaurant


@dataclass(frozen=True)
class ByDistance:
    origin: Coordinate


@dataclass(frozen=True)
class ByRating:
    pass


BY_RATING = ByRating()

RankMode = Union[ByDistance, ByRating]


def rating_or_zero(restaurant: Restaurant) -> float:
    return restaurant.rating if restaurant.rating is not None else 0.0


def rank(restaurants: Iterable[Restaurant], mode: RankMode) -> List[Restaurant]:
    """Return a new list ordered for the given mode.

    Distance mode sorts ascending, rating mode descending with a missing
    rating counted as 0. Both are stable on ties.
    """
    items = list(restaurants)
    if isinstance(mode, ByDistance):
        return sorted(items, key=lambda r: distance_m(mode.origin, r.coordinate))
    if isinstance(mode, ByRating):
        return sorted(items, key=rating_or_zero, reverse=True)
    raise ValueError(f"Unknown rank mode: {mode!r}")


def filter_restaurants(restaurants: Iterable[Restaurant], text: Optional[str]) -> List[Restaurant]:
    items = list(restaurants)
    needle = (text or "").strip().casefold()
    if not needle:
        return items
    out: List[Restaurant] = []
    for r in items:
        haystacks = (r.name, r.cuisine, r.address or "")
        if any(needle in h.casefold() for h in haystacks):
            out.append(r)
    return out
