"""Project configuration.

Loads user-defined search parameters from search_config.json when available,
falling back to sensible defaults. Keep API request shapes centralized here.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- API endpoints ---

PLACES_AUTOCOMPLETE_URL = "https://places.googleapis.com/v1/places:autocomplete"
PLACES_DETAILS_URL = "https://places.googleapis.com/v1/places/{place_id}"
PLACES_PHOTO_MEDIA_URL = "https://places.googleapis.com/v1/{photo_name}/media"

# --- Field masks ---

PLACES_AUTOCOMPLETE_FIELD_MASK = "suggestions.placePrediction.placeId"
PLACES_DETAILS_FIELDS: List[str] = [
    "id",
    "displayName",
    "formattedAddress",
    "location",
    "types",
    "nationalPhoneNumber",
    "rating",
    "priceLevel",
    "photos",
]
PLACES_DETAILS_FIELD_MASK = ",".join(PLACES_DETAILS_FIELDS)

# --- Query corpora ---

_DEFAULT_COUNTRYWIDE_QUERIES: List[str] = [
    "restaurant",
    "مطعم",
    "restaurant traditionnel",
    "restaurant marocain",
    "café restaurant",
    "restaurant grill",
    "restaurant poisson",
    "restaurant pizza",
    "restaurant fast food",
]
_DEFAULT_NEARBY_QUERIES: List[str] = _DEFAULT_COUNTRYWIDE_QUERIES + [
    "snack",
    "bistro",
    "restaurant halal",
]
_DEFAULT_CATEGORIES: List[str] = ["restaurant", "food"]

NEARBY_QUERIES: List[str] = list(_DEFAULT_NEARBY_QUERIES)
COUNTRYWIDE_QUERIES: List[str] = list(_DEFAULT_COUNTRYWIDE_QUERIES)
SEARCH_CATEGORIES: List[str] = list(_DEFAULT_CATEGORIES)

# --- Geography ---

# Flat-earth approximation used for the autocomplete location bias box.
METERS_PER_DEGREE = 111000.0
EARTH_RADIUS_M = 6371000.0
DEFAULT_RADIUS_M = 3000.0
DEFAULT_COUNTRY_CODE = "MA"

# --- Restaurant record defaults ---

FALLBACK_RESTAURANT_NAME = "Unknown Restaurant"
FALLBACK_CUISINE = "Restaurant"

# --- Images ---

PHOTO_MAX_SIZE_PX = 800
PLACEHOLDER_IMAGE_URI = (
    "data:image/svg+xml,%3Csvg xmlns='http://www.w3.org/2000/svg' width='100' height='100'%3E"
    "%3Crect width='100' height='100' fill='%23FF4E01'/%3E%3C/svg%3E"
)
IMAGE_URI_SCHEME = "restaurantfinder"
IMAGE_CACHE_MAX_BYTES = 50 * 1024 * 1024

# --- Timeouts and budgets ---

BRANCH_TIMEOUT_SECONDS = 15.0
MAX_REQUESTS_PER_RUN = 500

# --- HTTP ---

HTTP_TIMEOUT_SECONDS = 10
HTTP_RETRY_MAX = 3
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 8.0

# --- Outputs ---

OUTPUT_DIR = "out"
API_KEY_ENV = "GOOGLE_MAPS_API_KEY"


def load_search_config(path: Optional[str] = None) -> bool:
    """Load search configuration from a JSON file.

    Updates module-level globals with values from the config file.
    Returns True if config was loaded, False if file not found.
    """
    if path is None:
        path = str(_REPO_ROOT / "search_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return False

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    globals_ref = globals()

    queries = data.get("queries", {})
    nearby = queries.get("nearby", [])
    countrywide = queries.get("countrywide", [])
    if nearby:
        globals_ref["NEARBY_QUERIES"] = list(nearby)
    if countrywide:
        globals_ref["COUNTRYWIDE_QUERIES"] = list(countrywide)

    categories = data.get("categories", [])
    if categories:
        globals_ref["SEARCH_CATEGORIES"] = list(categories)

    radius = data.get("radius_m")
    if radius is not None:
        globals_ref["DEFAULT_RADIUS_M"] = float(radius)

    country = data.get("country_code")
    if country:
        globals_ref["DEFAULT_COUNTRY_CODE"] = str(country).strip().upper()

    timeout = data.get("branch_timeout_seconds")
    if timeout is not None:
        globals_ref["BRANCH_TIMEOUT_SECONDS"] = float(timeout)

    max_requests = data.get("max_requests_per_run")
    if max_requests is not None:
        globals_ref["MAX_REQUESTS_PER_RUN"] = int(max_requests)

    return True
