"""In-memory image cache for restaurant photos."""
from __future__ import annotations

import threading
from collections import OrderedDict
from functools import lru_cache
from typing import Optional

from . import config


def image_uri_for(key: str) -> str:
    return f"{config.IMAGE_URI_SCHEME}://image/{key}"


def key_from_image_uri(uri: str) -> Optional[str]:
    prefix = f"{config.IMAGE_URI_SCHEME}://image/"
    if not uri or not uri.startswith(prefix):
        return None
    key = uri[len(prefix):]
    return key or None


class ImageCache:
    """Keyed byte store bounded by a total size budget.

    Least recently used entries are evicted first. An entry larger than the
    whole budget is not stored.
    """

    def __init__(self, max_bytes: int = config.IMAGE_CACHE_MAX_BYTES) -> None:
        self.max_bytes = max(0, int(max_bytes))
        self._entries: "OrderedDict[str, bytes]" = OrderedDict()
        self._size = 0
        self._lock = threading.Lock()

    @property
    def size_bytes(self) -> int:
        return self._size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def put(self, key: str, data: bytes) -> bool:
        cost = len(data)
        with self._lock:
            self._remove_locked(key)
            if cost > self.max_bytes:
                return False
            while self._entries and self._size + cost > self.max_bytes:
                _, evicted = self._entries.popitem(last=False)
                self._size -= len(evicted)
            self._entries[key] = data
            self._size += cost
            return True

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            data = self._entries.get(key)
            if data is not None:
                self._entries.move_to_end(key)
            return data

    def remove(self, key: str) -> None:
        with self._lock:
            self._remove_locked(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._size = 0

    def resolve(self, uri: str) -> Optional[bytes]:
        key = key_from_image_uri(uri)
        if key is None:
            return None
        return self.get(key)

    def _remove_locked(self, key: str) -> None:
        data = self._entries.pop(key, None)
        if data is not None:
            self._size -= len(data)


@lru_cache(maxsize=1)
def shared_image_cache() -> ImageCache:
    return ImageCache(config.IMAGE_CACHE_MAX_BYTES)
