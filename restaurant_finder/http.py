"""HTTP client with retry/backoff and request budgeting."""
from __future__ import annotations

import json
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

REQUEST_KINDS = ("autocomplete", "details", "photos")


class BudgetExceededError(RuntimeError):
    pass


def _kind_counter() -> Dict[str, int]:
    return {kind: 0 for kind in REQUEST_KINDS}


@dataclass
class RequestMetrics:
    network: Dict[str, int] = field(default_factory=_kind_counter)
    errors: Dict[str, int] = field(default_factory=_kind_counter)

    @property
    def total_requests(self) -> int:
        return sum(self.network.values())

    def inc_network(self, kind: str) -> None:
        _check_kind(kind)
        self.network[kind] += 1

    def inc_error(self, kind: str) -> None:
        _check_kind(kind)
        self.errors[kind] += 1


def _check_kind(kind: str) -> None:
    if kind not in REQUEST_KINDS:
        raise ValueError(f"Unknown request kind: {kind}")


class RequestBudget:
    """Caps provider requests for one discovery run.

    consume() is called from worker threads, so the counter is lock-guarded.
    """

    def __init__(
        self,
        max_requests: int,
        on_consume: Optional[Callable[[str, int], None]] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.max_requests = max_requests
        self.on_consume = on_consume
        self.metrics = metrics
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        return self._count

    def consume(self, kind: str) -> None:
        _check_kind(kind)
        with self._lock:
            if self._count >= self.max_requests:
                raise BudgetExceededError(
                    f"Request budget exceeded: {self._count} >= {self.max_requests}"
                )
            self._count += 1
            if self.metrics is not None:
                self.metrics.inc_network(kind)
            count = self._count
        if self.on_consume:
            self.on_consume(kind, count)


class HttpClient:
    """Blocking Places HTTP client.

    Calls arrive from asyncio worker threads, so each thread gets its own
    session from session_factory.
    """

    def __init__(
        self,
        api_key: str,
        timeout: int = 10,
        retry_max: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.retry_max = retry_max
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.session_factory = session_factory
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self.session_factory()
            self._local.session = session
        return session

    def post_json(
        self,
        url: str,
        body: Dict[str, Any],
        field_mask: str,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        headers = self._headers(field_mask, extra_headers)
        headers["Content-Type"] = "application/json"
        payload = json.dumps(body)
        resp = self._send("POST", url, headers=headers, data=payload)
        return _decode_json(resp, url)

    def get_json(
        self,
        url: str,
        field_mask: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = self._headers(field_mask)
        resp = self._send("GET", url, headers=headers, params=params)
        return _decode_json(resp, url)

    def get_bytes(self, url: str, params: Optional[Dict[str, Any]] = None) -> bytes:
        headers = {"X-Goog-Api-Key": self.api_key}
        resp = self._send("GET", url, headers=headers, params=params)
        return resp.content

    def _headers(
        self, field_mask: str, extra_headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        headers = {
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": field_mask,
        }
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        for attempt in range(1, self.retry_max + 1):
            try:
                resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException:
                if attempt >= self.retry_max:
                    raise
                self._sleep_backoff(attempt)
                continue

            status = resp.status_code
            if 200 <= status < 300:
                return resp

            if status in (429, 500, 502, 503, 504):
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                if attempt >= self.retry_max:
                    resp.raise_for_status()
                if not self._sleep_retry_after(resp):
                    self._sleep_backoff(attempt)
                continue

            # Non-retryable
            logger.error("HTTP %s from %s", status, url)
            resp.raise_for_status()

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _sleep_backoff(self, attempt: int) -> None:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        time.sleep(base + jitter)

    def _sleep_retry_after(self, resp: requests.Response) -> bool:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return False
        try:
            delay = float(retry_after)
        except ValueError:
            return False
        delay = max(0.0, min(delay, self.backoff_max))
        time.sleep(delay)
        return True


def _decode_json(resp: requests.Response, url: str) -> Dict[str, Any]:
    try:
        return resp.json()
    except ValueError:
        logger.error("Non-JSON response from %s", url)
        raise
