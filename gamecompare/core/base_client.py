# ===== IMPORTS & DEPENDENCIES =====
import logging
import asyncio
import aiohttp
from typing import Optional, Any, Dict, Callable, Awaitable

from gamecompare.config import COMMON_HEADERS, MAX_RETRIES, RETRY_BASE_DELAY, REQUEST_TIMEOUT
from gamecompare.core.cache import TTLCache
from gamecompare.core.errors import TransportError

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

# ===== CORE BUSINESS LOGIC =====
async def fetch_with_retry(
    session: aiohttp.ClientSession,
    url: str,
    method: str = 'GET',
    headers: Optional[Dict[str, str]] = None,
    payload: Optional[Dict[str, Any]] = None,
    params: Optional[Dict[str, Any]] = None,
    max_retries: int = MAX_RETRIES,
    base_delay: float = RETRY_BASE_DELAY,
    sleep: Sleep = asyncio.sleep,
) -> Any:
    """
    Requests `url` and returns the decoded JSON body.

    Any non-2xx status or transport exception counts as a failed attempt. Up to
    `max_retries` attempts are made (the first included); after failed attempt
    k (zero-indexed) the client waits `base_delay * 2**k` seconds. Once the
    attempts are exhausted the last failure is raised as TransportError.
    """
    request_headers = headers or COMMON_HEADERS
    timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
    last_error: Optional[TransportError] = None

    for attempt in range(max_retries):
        try:
            async with session.request(method, url, headers=request_headers, json=payload, params=params, timeout=timeout) as response:
                if not 200 <= response.status < 300:
                    raise TransportError(url, response.reason or "Unexpected status", status=response.status)
                # content_type=None handles non-standard API content-types
                return await response.json(content_type=None)
        except TransportError as e:
            last_error = e
            logger.warning(f"⚠️ HTTP error on {url} (Attempt {attempt + 1}/{max_retries}): Status {e.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            last_error = TransportError(url, f"{type(e).__name__}: {e}")
            logger.warning(f"⚠️ Network error on {url} (Attempt {attempt + 1}/{max_retries}): {type(e).__name__}")

        if attempt < max_retries - 1:
            delay = base_delay * (2 ** attempt)
            logger.info(f"Retrying request to {url} in {delay:.2f} seconds...")
            await sleep(delay)

    logger.error(f"❌ Giving up on {url} after {max_retries} attempts.")
    if last_error is None:
        last_error = TransportError(url, "No attempts were made")
    raise last_error


class BaseWebClient:
    """A base class for storefront clients providing shared caching and robust fetching."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        cache: TTLCache,
        cache_ttl: int,
        rate_limit_delay: float = 0.0,
        max_retries: int = MAX_RETRIES,
        retry_base_delay: float = RETRY_BASE_DELAY,
        sleep: Sleep = asyncio.sleep,
    ):
        self._session = session
        self._cache = cache
        self._cache_ttl = cache_ttl
        self.rate_limit_delay = rate_limit_delay
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep
        logger.debug(f"[{self.__class__.__name__}] Initialized with cache TTL: {self._cache_ttl}s")

    @property
    def cache_ttl_hours(self) -> float:
        return self._cache_ttl / 3600

    async def throttle(self) -> None:
        """Waits the fixed rate-limit delay. Used between records of a sync batch only."""
        if self.rate_limit_delay > 0:
            await self._sleep(self.rate_limit_delay)

    async def _fetch(
        self,
        url: str,
        method: str = 'GET',
        headers: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Fetches JSON with this client's retry settings. Raises TransportError."""
        logger.info(f"➡️ [{self.__class__.__name__}] Fetching from network: {url}")
        return await fetch_with_retry(
            self._session,
            url,
            method=method,
            headers=headers,
            payload=payload,
            params=params,
            max_retries=self._max_retries,
            base_delay=self._retry_base_delay,
            sleep=self._sleep,
        )

    async def _cached(self, key: str, factory: Callable[[], Awaitable[Any]], ttl: Optional[int] = None) -> Any:
        """
        Returns the cached value for `key`, or awaits `factory()` and caches its result.
        None results are not cached so a missing item is looked up again next time.
        """
        cached = self._cache.get(key)
        if cached is not None:
            logger.info(f"✅ [{self.__class__.__name__}] Loading content from cache: {key}")
            return cached

        value = await factory()
        if value is not None:
            self._cache.set(key, value, self._cache_ttl if ttl is None else ttl)
            logger.debug(f"💾 [{self.__class__.__name__}] Content saved to cache: {key}")
        return value
