"""Read-through HTTP fetcher with TTL validation and rate-limit backoff.

All upstream I/O goes through a single CachedFetcher instance. It receives an
httpx.AsyncClient and a cache via constructor injection; the lifespan owns
both lifecycles.

Known limitation: two concurrent fetches of the same key may both miss and
both hit the network. Whichever writes last wins the cache slot; nothing
requires single-flight de-duplication.
"""

from __future__ import annotations

import asyncio
import json
import math
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import httpx
import structlog
from pydantic import BaseModel, Field

from openshelf.errors import HttpError, NetworkError, RateLimitExceeded
from openshelf.models.cache import CacheEntry

if TYPE_CHECKING:
    from openshelf.config import ApiSettings, FetcherSettings
    from openshelf.protocols import CacheProtocol

log = structlog.get_logger()

# The body is stored decoded, so transfer/encoding metadata must not be replayed.
_UNCACHED_HEADERS = frozenset(
    {"content-encoding", "content-length", "transfer-encoding", "connection", "keep-alive"}
)


def build_http_client(settings: ApiSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup.

    No explicit timeout is set: network calls inherit the transport default.
    """
    return httpx.AsyncClient(
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


class RequestOptions(BaseModel):
    """Request parameters that take part in the cache key."""

    method: str = "GET"
    params: dict[str, str] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None


_DEFAULT_OPTIONS = RequestOptions()


def normalize_url(url: str, params: dict[str, str] | None = None) -> str:
    """Canonical form of a request target.

    Lowercases scheme and host, drops default ports and the fragment, merges
    ``params`` into the query string and sorts the query parameters.
    """
    parsed = httpx.URL(url.split("#", 1)[0])
    if params:
        parsed = parsed.copy_merge_params(params)
    return str(parsed.copy_with(params=sorted(parsed.params.multi_items())))


def cache_key(url: str, options: RequestOptions | None = None) -> str:
    """Deterministic cache key for ``(url, options)``.

    Pure and order-independent: query parameter order and header-name case do
    not change the key.
    """
    options = options or _DEFAULT_OPTIONS
    target = normalize_url(url, options.params)

    canonical = {
        "method": options.method.upper(),
        "headers": {name.lower(): value for name, value in options.headers.items()},
        "body": options.body,
    }
    if canonical == {"method": "GET", "headers": {}, "body": None}:
        return target
    return f"{target}_{json.dumps(canonical, sort_keys=True, separators=(',', ':'))}"


def parse_retry_after(value: str | None, default_seconds: float) -> float:
    """Delay in seconds from a ``Retry-After`` header, or ``default_seconds``."""
    if value is None:
        return default_seconds
    try:
        seconds = float(value.strip())
    except ValueError:
        return default_seconds
    if not math.isfinite(seconds) or seconds < 0:
        return default_seconds
    return seconds


def _entry_from_response(key: str, response: httpx.Response) -> CacheEntry:
    return CacheEntry(
        key=key,
        body=response.text,
        status=response.status_code,
        status_text=response.reason_phrase,
        headers={
            name: value
            for name, value in response.headers.items()
            if name.lower() not in _UNCACHED_HEADERS
        },
        timestamp=datetime.now(UTC),
    )


def _response_from_entry(entry: CacheEntry, request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        status_code=entry.status,
        headers=entry.headers,
        content=entry.body.encode("utf-8"),
        request=request,
        extensions={
            "reason_phrase": entry.status_text.encode("ascii", errors="ignore"),
            "from_cache": True,
        },
    )


class CachedFetcher:
    """Read-through fetcher implementing FetcherProtocol."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: CacheProtocol,
        settings: FetcherSettings,
        *,
        ttl: timedelta,
    ) -> None:
        self._client = client
        self._cache = cache
        self._settings = settings
        self._ttl = ttl

    async def fetch(self, url: str, options: RequestOptions | None = None) -> httpx.Response:
        """Return the response for ``url``, from cache when fresh.

        Raises HttpError on non-2xx statuses other than 429, RateLimitExceeded
        once the 429 retry budget is spent, and NetworkError on transport
        failures. Only successful responses are written to the cache.
        """
        options = options or _DEFAULT_OPTIONS
        key = cache_key(url, options)
        max_retries = self._settings.max_rate_limit_retries
        default_delay = self._settings.default_retry_after_ms / 1000

        for attempt in range(max_retries + 1):
            # Re-check the cache on every attempt: a concurrent caller may
            # have stored the entry while this one was backing off.
            cached = await self._lookup(key, url, options)
            if cached is not None:
                return cached

            response = await self._send(url, options)

            if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
                if attempt == max_retries:
                    break
                delay = parse_retry_after(response.headers.get("retry-after"), default_delay)
                log.warning("rate_limited", url=url, attempt=attempt + 1, retry_in=delay)
                await asyncio.sleep(delay)
                continue

            if not response.is_success:
                log.warning("fetch_failed", url=url, status_code=response.status_code)
                raise HttpError(response.status_code, url)

            await self._cache.put(_entry_from_response(key, response))
            log.info(
                "fetch_complete",
                url=url,
                status_code=response.status_code,
                content_length=len(response.content),
            )
            return response

        log.warning("rate_limit_exceeded", url=url, attempts=max_retries + 1)
        raise RateLimitExceeded(url, attempts=max_retries + 1)

    async def _lookup(
        self, key: str, url: str, options: RequestOptions
    ) -> httpx.Response | None:
        entry = await self._cache.get(key)
        if entry is None:
            log.debug("cache_miss", key=key)
            return None

        if entry.is_expired(datetime.now(UTC), self._ttl):
            log.info("cache_expired", key=key, cached_at=entry.timestamp.isoformat())
            await self._cache.delete(key)
            return None

        log.debug("cache_hit", key=key)
        request = httpx.Request(options.method.upper(), normalize_url(url, options.params))
        return _response_from_entry(entry, request)

    async def _send(self, url: str, options: RequestOptions) -> httpx.Response:
        try:
            return await self._client.request(
                options.method.upper(),
                url,
                params=options.params or None,
                headers=options.headers or None,
                content=options.body,
            )
        except httpx.HTTPError as exc:
            raise NetworkError(url, str(exc)) from exc
