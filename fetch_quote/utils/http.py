from __future__ import annotations

import json
import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

import requests

from .cache import ResponseCache

T = TypeVar("T")
R = TypeVar("R")

SOFT_LIMIT_MIN_DELAY_MS = 10_000
SOFT_LIMIT_MARKERS = ("frequency", "limit", "please consider")


class FetchError(RuntimeError):
    def __init__(self, message: str, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status = status
        self.body = body


class SoftRateLimitError(FetchError):
    """Upstream answered 200 but the payload says the request was throttled."""


class FetchCancelled(RuntimeError):
    pass


@dataclass
class BackoffConfig:
    max_retries: int = 6
    base_delay_ms: int = 800
    factor: float = 2
    max_delay_ms: int = 30_000
    jitter_ms: int = 400


@dataclass
class RetryInfo:
    attempt: int
    delay_ms: int
    reason: str


class CancelToken:
    """Cooperative cancellation shared by workers, backoff waits and loop sleeps."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns True if cancelled meanwhile."""
        return self._event.wait(max(0.0, seconds))

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise FetchCancelled("Operation cancelled")


def compute_delay(attempt: int, cfg: BackoffConfig) -> int:
    exp = min(cfg.max_delay_ms, cfg.base_delay_ms * cfg.factor ** attempt)
    jitter = random.randint(0, cfg.jitter_ms) if cfg.jitter_ms > 0 else 0
    return int(exp + jitter)


def is_soft_limit(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    for field in ("Note", "Information"):
        msg = data.get(field)
        if isinstance(msg, str):
            lowered = msg.lower()
            if any(marker in lowered for marker in SOFT_LIMIT_MARKERS):
                return True
    return False


def _is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status < 600


def _wait(delay_ms: int, cancel: CancelToken | None) -> None:
    if cancel is None:
        time.sleep(delay_ms / 1000)
        return
    if cancel.wait(delay_ms / 1000):
        raise FetchCancelled("Retry wait cancelled")


def _notify(on_retry: Callable[[RetryInfo], None] | None, info: RetryInfo) -> None:
    if on_retry is None:
        return
    try:
        on_retry(info)
    except Exception as exc:  # callback must not alter retry flow
        logging.debug("on_retry callback failed: %s", exc)


def _parse_body(resp: requests.Response) -> Any:
    text = resp.text
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return text


def fetch_with_backoff(
    url: str,
    backoff: BackoffConfig | None = None,
    on_retry: Callable[[RetryInfo], None] | None = None,
    session: requests.Session | None = None,
    timeout: float = 10.0,
    cancel: CancelToken | None = None,
) -> Any:
    """
    GET ``url`` and return its decoded JSON body (raw text if not JSON).

    429/5xx responses, network errors and soft rate-limit payloads are retried
    with exponential backoff and jitter, up to ``max_retries`` extra attempts.
    Other non-2xx statuses raise ``FetchError`` straight away.
    """
    cfg = backoff or BackoffConfig()
    http = session or requests.Session()
    last_error: Exception | None = None

    for attempt in range(cfg.max_retries + 1):
        if cancel is not None:
            cancel.raise_if_cancelled()
        is_last = attempt == cfg.max_retries
        try:
            resp = http.get(url, timeout=timeout)
        except requests.RequestException as exc:
            last_error = exc
            if is_last:
                break
            delay = compute_delay(attempt, cfg)
            _notify(on_retry, RetryInfo(attempt=attempt + 1, delay_ms=delay, reason=f"network error: {exc}"))
            _wait(delay, cancel)
            continue

        status = resp.status_code
        if _is_retryable_status(status):
            last_error = FetchError(f"HTTP {status} for {_redact(url)}", status=status, body=resp.text)
            if is_last:
                break
            delay = compute_delay(attempt, cfg)
            _notify(on_retry, RetryInfo(attempt=attempt + 1, delay_ms=delay, reason=f"HTTP {status}"))
            _wait(delay, cancel)
            continue

        if not 200 <= status < 300:
            raise FetchError(f"HTTP {status} for {_redact(url)}: {resp.text[:200]}", status=status, body=resp.text)

        data = _parse_body(resp)
        if is_soft_limit(data):
            message = data.get("Note") or data.get("Information")
            last_error = SoftRateLimitError(f"Soft rate limit: {message}", status=status, body=resp.text)
            if is_last:
                break
            delay = max(SOFT_LIMIT_MIN_DELAY_MS, compute_delay(attempt, cfg))
            _notify(on_retry, RetryInfo(attempt=attempt + 1, delay_ms=delay, reason="soft rate limit"))
            _wait(delay, cancel)
            continue

        return data

    raise last_error or FetchError(f"Request failed for {_redact(url)}")


def cached_fetch_json(
    url: str,
    cache: ResponseCache | None,
    ttl_ms: int,
    backoff: BackoffConfig | None = None,
    on_retry: Callable[[RetryInfo], None] | None = None,
    session: requests.Session | None = None,
    timeout: float = 10.0,
    cancel: CancelToken | None = None,
) -> Any:
    if cache is not None:
        entry = cache.get(url)
        if entry is not None and entry.is_fresh():
            return entry.data
        logging.debug("Cache miss for %s", _redact(url))
    data = fetch_with_backoff(url, backoff=backoff, on_retry=on_retry, session=session, timeout=timeout, cancel=cancel)
    if cache is not None:
        cache.set(url, data, ttl_ms)
    return data


def _redact(url: str) -> str:
    # keep API keys out of logs and error messages
    for param in ("apikey=", "token="):
        idx = url.find(param)
        if idx != -1:
            end = url.find("&", idx)
            url = url[: idx + len(param)] + "***" + (url[end:] if end != -1 else "")
    return url


@dataclass
class MapResult(Generic[T, R]):
    item: T
    value: Optional[R] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def map_limit(
    items: Iterable[T],
    limit: int,
    fn: Callable[[T], R],
    cancel: CancelToken | None = None,
) -> List[MapResult[T, R]]:
    """
    Apply ``fn`` to every item with at most ``limit`` calls in flight.

    Results come back in input order. A failing item records its exception
    instead of aborting the batch.
    """
    items = list(items)
    if not items:
        return []

    def run(item: T) -> MapResult[T, R]:
        if cancel is not None and cancel.cancelled:
            return MapResult(item=item, error=FetchCancelled("Operation cancelled"))
        try:
            return MapResult(item=item, value=fn(item))
        except Exception as exc:
            return MapResult(item=item, error=exc)

    with ThreadPoolExecutor(max_workers=max(1, min(limit, len(items)))) as pool:
        return list(pool.map(run, items))
