"""Error types raised and collected by the discovery pipeline."""
from __future__ import annotations

from typing import Optional


class DiscoveryError(RuntimeError):
    pass


class ProviderUnavailableError(DiscoveryError):
    """Raised when no provider call can be issued at all."""


class AutocompleteError(DiscoveryError):
    def __init__(self, query: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Autocomplete failed for {query!r}: {_describe(cause)}")
        self.query = query
        self.__cause__ = cause


class DetailFetchError(DiscoveryError):
    def __init__(self, place_id: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Details fetch failed for {place_id}: {_describe(cause)}")
        self.place_id = place_id
        self.__cause__ = cause


class PhotoFetchError(DiscoveryError):
    def __init__(
        self, place_id: str, photo_ref: str, cause: Optional[BaseException] = None
    ) -> None:
        super().__init__(f"Photo fetch failed for {place_id} ({photo_ref}): {_describe(cause)}")
        self.place_id = place_id
        self.photo_ref = photo_ref
        self.__cause__ = cause


def _describe(cause: Optional[BaseException]) -> str:
    if cause is None:
        return "unknown error"
    text = str(cause)
    return text or type(cause).__name__
