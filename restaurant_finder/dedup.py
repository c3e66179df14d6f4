"""Concurrent-safe merging of place candidates and enriched restaurants."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Dict, Iterable, List, Optional

from .models import PlaceCandidate, Restaurant


class CandidateSet:
    """Unique place candidates keyed by place id.

    Every insert goes through one asyncio.Lock so concurrent producers never
    lose an entry. Iteration order is first-insert order, which only reflects
    the completion order of producers.
    """

    def __init__(self) -> None:
        self._by_id: Dict[str, PlaceCandidate] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, place_id: object) -> bool:
        return place_id in self._by_id

    async def add_all(self, candidates: Iterable[PlaceCandidate]) -> int:
        added = 0
        async with self._lock:
            for candidate in candidates:
                if candidate.place_id in self._by_id:
                    continue
                self._by_id[candidate.place_id] = candidate
                added += 1
        return added

    def snapshot(self) -> List[PlaceCandidate]:
        return list(self._by_id.values())


async def merge(
    streams: Iterable[Awaitable[Iterable[PlaceCandidate]]],
    candidates: Optional[CandidateSet] = None,
) -> List[PlaceCandidate]:
    """Await every stream concurrently and fold the results into one set.

    Streams must absorb their own errors; an exception escaping a stream
    propagates once every other stream has settled.
    """
    target = candidates if candidates is not None else CandidateSet()

    async def _drain(stream: Awaitable[Iterable[PlaceCandidate]]) -> None:
        await target.add_all(await stream)

    results = await asyncio.gather(*(_drain(s) for s in streams), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return target.snapshot()


class RestaurantCollector:
    """Shared result list for concurrent enrichment tasks, unique by id."""

    def __init__(self) -> None:
        self._items: Dict[str, Restaurant] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._items)

    async def add(self, restaurant: Restaurant) -> bool:
        async with self._lock:
            if restaurant.id in self._items:
                return False
            self._items[restaurant.id] = restaurant
            return True

    def snapshot(self) -> List[Restaurant]:
        return list(self._items.values())
