import asyncio
import logging
import time

import pytest

from fakes import FakePlacesClient, make_details, offset_north
from restaurant_finder import config
from restaurant_finder.cache import ImageCache, image_uri_for
from restaurant_finder.errors import AutocompleteError, DetailFetchError, ProviderUnavailableError
from restaurant_finder.geo import distance_m
from restaurant_finder.models import Coordinate
from restaurant_finder.pipeline import DiscoveryPipeline, DiscoveryStage
from restaurant_finder.places_client import GooglePlacesClient
from restaurant_finder.ranking import rating_or_zero

ORIGIN = Coordinate(latitude=33.59, longitude=-7.61)


def make_pipeline(client, **kwargs):
    return DiscoveryPipeline(client=client, image_cache=ImageCache(), **kwargs)


def nearby_client():
    queries = config.NEARBY_QUERIES
    autocomplete = {
        queries[0]: ["p500", "p3500", "p1200"],
        queries[1]: ["p1200", "p2000"],
        queries[4]: ["p2900", "p500"],
        queries[11]: ["p3500"],
    }
    details = {
        "p500": make_details("p500", offset_north(ORIGIN, 500), rating=3.0),
        "p1200": make_details("p1200", offset_north(ORIGIN, 1200), rating=4.0),
        "p2000": make_details("p2000", offset_north(ORIGIN, 2000)),
        "p2900": make_details("p2900", offset_north(ORIGIN, 2900), rating=5.0),
        "p3500": make_details("p3500", offset_north(ORIGIN, 3500), rating=4.9),
    }
    # Nearest places settle last.
    delays = {"p500": 0.03, "p1200": 0.02, "p2000": 0.01}
    return FakePlacesClient(autocomplete=autocomplete, details=details, delays=delays)


def test_nearby_excludes_out_of_radius_and_sorts_by_distance():
    client = nearby_client()
    pipeline = make_pipeline(client)

    result = asyncio.run(pipeline.run_nearby(ORIGIN, 3000))

    ids = [r.id for r in result.restaurants]
    assert ids == ["p500", "p1200", "p2000", "p2900"]
    assert result.summary["unique_candidates"] == 5
    assert result.summary["skipped_out_of_radius"] == 1
    assert result.errors == []

    distances = [distance_m(ORIGIN, r.coordinate) for r in result.restaurants]
    assert all(d <= 3000 for d in distances)
    assert all(a <= b for a, b in zip(distances, distances[1:]))


def test_nearby_issues_every_query_with_one_session_token_and_bias():
    client = nearby_client()
    pipeline = make_pipeline(client)

    asyncio.run(pipeline.discover_nearby(ORIGIN, 3000))

    assert sorted(q for q, _, _ in client.autocomplete_calls) == sorted(config.NEARBY_QUERIES)
    tokens = {token for _, _, token in client.autocomplete_calls}
    tokens.update(token for _, _, token in client.details_calls)
    assert len(tokens) == 1

    search_filter = client.autocomplete_calls[0][1]
    assert search_filter.categories == ("restaurant", "food")
    assert search_filter.country_code is None
    delta = 3000 / 111000
    assert search_filter.location_bias["lat_min"] == pytest.approx(ORIGIN.latitude - delta)
    assert search_filter.location_bias["lon_max"] == pytest.approx(ORIGIN.longitude + delta)


def test_each_run_gets_a_fresh_session_token():
    client = nearby_client()
    pipeline = make_pipeline(client)

    asyncio.run(pipeline.discover_nearby(ORIGIN, 3000))
    first = client.autocomplete_calls[0][2]
    client.autocomplete_calls.clear()
    asyncio.run(pipeline.discover_nearby(ORIGIN, 3000))
    second = client.autocomplete_calls[0][2]

    assert first != second


def test_countrywide_orders_by_rating_with_missing_as_zero():
    queries = config.COUNTRYWIDE_QUERIES
    ratings = {"a": 4.5, "b": None, "c": 3.0, "d": 5.0, "e": 4.0, "f": None}
    autocomplete = {q: [] for q in queries}
    autocomplete[queries[0]] = ["a", "b", "c"]
    autocomplete[queries[1]] = ["b", "c", "d"]
    autocomplete[queries[2]] = ["d", "e"]
    autocomplete[queries[5]] = ["e", "f", "a"]
    autocomplete[queries[8]] = ["f"]
    # Coordinates spread across the country; no radius applies.
    details = {
        pid: make_details(pid, offset_north(ORIGIN, 100000 * i), rating=rating)
        for i, (pid, rating) in enumerate(ratings.items())
    }
    client = FakePlacesClient(autocomplete=autocomplete, details=details)
    pipeline = make_pipeline(client)

    result = asyncio.run(pipeline.run_countrywide("ma"))

    ratings_out = [r.rating for r in result.restaurants]
    assert ratings_out[:4] == [5.0, 4.5, 4.0, 3.0]
    assert ratings_out[4:] == [None, None]
    assert sorted(r.id for r in result.restaurants[4:]) == ["b", "f"]
    scores = [rating_or_zero(r) for r in result.restaurants]
    assert all(a >= b for a, b in zip(scores, scores[1:]))

    assert len(client.autocomplete_calls) == 9
    search_filter = client.autocomplete_calls[0][1]
    assert search_filter.country_code == "MA"
    assert search_filter.location_bias is None
    assert result.summary["country_code"] == "MA"


def test_partial_failures_do_not_fail_the_batch():
    queries = config.NEARBY_QUERIES
    autocomplete = {
        queries[0]: RuntimeError("quota"),
        queries[1]: ConnectionError("reset"),
        queries[2]: ValueError("bad response"),
        queries[3]: ["ok1", "bad1"],
        queries[4]: ["ok2", "bad2", "ok3"],
        queries[5]: ["ok1"],
    }
    details = {
        "ok1": make_details("ok1", offset_north(ORIGIN, 100)),
        "ok2": make_details("ok2", offset_north(ORIGIN, 200)),
        "ok3": make_details("ok3", offset_north(ORIGIN, 300)),
        "bad1": RuntimeError("details down"),
        "bad2": RuntimeError("details down"),
    }
    client = FakePlacesClient(autocomplete=autocomplete, details=details)
    pipeline = make_pipeline(client)

    result = asyncio.run(pipeline.run_nearby(ORIGIN, 3000))

    assert [r.id for r in result.restaurants] == ["ok1", "ok2", "ok3"]
    assert result.summary["autocomplete_errors"] == 3
    assert result.summary["detail_errors"] == 2
    assert result.error_count == 5
    assert sum(isinstance(e, AutocompleteError) for e in result.errors) == 3
    assert {e.place_id for e in result.errors if isinstance(e, DetailFetchError)} == {"bad1", "bad2"}


def test_same_place_from_every_query_appears_once():
    autocomplete = {q: ["dup"] for q in config.NEARBY_QUERIES}
    details = {"dup": make_details("dup", offset_north(ORIGIN, 50))}
    client = FakePlacesClient(autocomplete=autocomplete, details=details)
    pipeline = make_pipeline(client)

    restaurants = asyncio.run(pipeline.discover_nearby(ORIGIN, 3000))

    assert [r.id for r in restaurants] == ["dup"]
    assert len(client.details_calls) == 1


def test_every_restaurant_has_an_image_url():
    queries = config.NEARBY_QUERIES
    autocomplete = {queries[0]: ["with_photo", "broken_photo", "no_photo"]}
    details = {
        "with_photo": make_details("with_photo", offset_north(ORIGIN, 10), photos=["places/with_photo/photos/1"]),
        "broken_photo": make_details("broken_photo", offset_north(ORIGIN, 20), photos=["places/broken/photos/1"]),
        "no_photo": make_details("no_photo", offset_north(ORIGIN, 30)),
    }
    photos = {
        "places/with_photo/photos/1": b"jpeg-bytes",
        "places/broken/photos/1": TimeoutError("slow"),
    }
    client = FakePlacesClient(autocomplete=autocomplete, details=details, photos=photos)
    cache = ImageCache()
    pipeline = DiscoveryPipeline(client=client, image_cache=cache)

    result = asyncio.run(pipeline.run_nearby(ORIGIN, 3000))

    by_id = {r.id: r for r in result.restaurants}
    assert len(by_id) == 3
    assert all(r.image_url for r in result.restaurants)
    assert by_id["with_photo"].image_url == image_uri_for("with_photo")
    assert cache.resolve(by_id["with_photo"].image_url) == b"jpeg-bytes"
    assert by_id["broken_photo"].image_url == config.PLACEHOLDER_IMAGE_URI
    assert by_id["no_photo"].image_url == config.PLACEHOLDER_IMAGE_URI
    assert result.summary["photo_errors"] == 1


def test_hung_branches_time_out_instead_of_stalling():
    queries = config.NEARBY_QUERIES
    autocomplete = {queries[0]: ["fast", "slow"], queries[1]: ["fast"]}
    details = {
        "fast": make_details("fast", offset_north(ORIGIN, 10)),
        "slow": make_details("slow", offset_north(ORIGIN, 20)),
    }
    delays = {"slow": 5.0, queries[1]: 5.0}
    client = FakePlacesClient(autocomplete=autocomplete, details=details, delays=delays)
    pipeline = make_pipeline(client, branch_timeout=0.05)

    result = asyncio.run(pipeline.run_nearby(ORIGIN, 3000))

    assert [r.id for r in result.restaurants] == ["fast"]
    assert result.summary["autocomplete_errors"] == 1
    assert result.summary["detail_errors"] == 1


def test_stage_sequence_is_recorded():
    pipeline = make_pipeline(FakePlacesClient())

    result = asyncio.run(pipeline.run_countrywide("MA"))

    assert result.restaurants == []
    assert result.summary["stages"] == [
        DiscoveryStage.AUTOCOMPLETE_FAN_OUT.value,
        DiscoveryStage.MERGING.value,
        DiscoveryStage.DETAIL_FAN_OUT.value,
        DiscoveryStage.RANKING.value,
        DiscoveryStage.DONE.value,
    ]


def test_discover_falls_back_to_countrywide_without_origin(monkeypatch):
    monkeypatch.setattr(config, "DEFAULT_COUNTRY_CODE", "FR")
    client = FakePlacesClient()
    pipeline = make_pipeline(client)

    asyncio.run(pipeline.discover())

    assert len(client.autocomplete_calls) == len(config.COUNTRYWIDE_QUERIES)
    assert client.autocomplete_calls[0][1].country_code == "FR"


def test_missing_api_key_is_a_hard_failure():
    with pytest.raises(ProviderUnavailableError):
        DiscoveryPipeline(api_key=None)


def test_invalid_arguments_raise_before_any_request():
    client = FakePlacesClient()
    pipeline = make_pipeline(client)

    with pytest.raises(ValueError):
        asyncio.run(pipeline.run_nearby(ORIGIN, 0))
    with pytest.raises(ValueError):
        asyncio.run(pipeline.run_countrywide("  "))
    assert client.autocomplete_calls == []


class SlowHttpClient:
    """Blocking stand-in for HttpClient; every autocomplete takes a while."""

    def __init__(self, delay=0.05):
        self.delay = delay

    def post_json(self, url, body, field_mask, extra_headers=None):
        time.sleep(self.delay)
        return {"suggestions": []}


def test_overlapping_runs_keep_their_own_request_budget():
    shared = GooglePlacesClient(SlowHttpClient())
    pipeline = DiscoveryPipeline(
        client=shared,
        image_cache=ImageCache(),
        max_requests=len(config.NEARBY_QUERIES),
    )

    async def overlapping():
        stale = asyncio.ensure_future(pipeline.run_nearby(ORIGIN, 3000))
        await asyncio.sleep(0)
        fresh = await pipeline.run_nearby(ORIGIN, 3000)
        return await stale, fresh

    stale, fresh = asyncio.run(overlapping())

    for result in (stale, fresh):
        assert result.summary["requests"]["autocomplete"] == len(config.NEARBY_QUERIES)
        assert result.summary["autocomplete_errors"] == 0
        assert result.errors == []
    assert shared.budget is None


def test_merging_starts_while_autocomplete_branches_are_in_flight(caplog):
    merging_seen = []

    class RecordingClient(FakePlacesClient):
        async def autocomplete(self, query, search_filter, session_token):
            merging_seen.append(any("-> merging" in r.getMessage() for r in caplog.records))
            return await super().autocomplete(query, search_filter, session_token)

    pipeline = make_pipeline(RecordingClient())

    with caplog.at_level(logging.DEBUG, logger="restaurant_finder.pipeline"):
        asyncio.run(pipeline.run_countrywide("MA"))

    assert len(merging_seen) == len(config.COUNTRYWIDE_QUERIES)
    assert all(merging_seen)
