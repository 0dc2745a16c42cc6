"""
Fetch client for the upstream community mindshare API.

Resolves "current leaderboard for window W" into a payload by trying the
direct API first and then an ordered list of fallback proxies, each with its
own timeout. Successful payloads are kept in the injected LeaderboardCache so
repeated requests inside the TTL never touch the network.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from mindshare.config import Config
from mindshare.constants import UpstreamFields
from mindshare.data_models.leaderboard import FetchAttempt, FetchResult, LeaderboardWindow
from mindshare.services.leaderboard_cache import LeaderboardCache
from mindshare.utils.exceptions import MalformedPayloadError, UpstreamUnavailableError
from mindshare.utils.logger import setup_logger
from mindshare.utils.payload_parser import validate_payload

logger = setup_logger(__name__)


@dataclass(frozen=True)
class FetchSource:
    """One upstream endpoint and the transport convention it follows."""
    name: str
    kind: str  # "direct", "path" or "passthrough"
    base_url: str

    def build_url(self, window: LeaderboardWindow, target_url: str) -> str:
        if self.kind == "direct":
            return target_url
        if self.kind == "path":
            return f"{self.base_url.rstrip('/')}/{window.value}"
        # Generic proxy: the full target URL is URL-encoded onto the proxy prefix
        return self.base_url + quote(target_url, safe="-_.!~*'()")

    def unwrap(self, data):
        """Strip the proxy envelope some passthrough proxies add."""
        if self.kind == "passthrough" and isinstance(data, dict) and UpstreamFields.PROXY_ENVELOPE in data:
            contents = data[UpstreamFields.PROXY_ENVELOPE]
            if isinstance(contents, str):
                return json.loads(contents)
            return contents
        return data


class MindshareFetchClient:
    """Primary-then-fallback upstream client with TTL caching."""

    def __init__(
        self,
        cache: LeaderboardCache,
        client: Optional[httpx.AsyncClient] = None,
        direct_url: Optional[str] = None,
        ticker: Optional[str] = None,
        fallback_sources: Optional[List[Tuple[str, str]]] = None,
        timeout: Optional[float] = None,
        diagnostic_timeout: Optional[float] = None,
        api_key: Optional[str] = None,
        api_key_header: Optional[str] = None
    ):
        self.cache = cache
        self._client = client
        self._owns_client = client is None
        self.direct_url = direct_url or Config.DIRECT_URL
        self.ticker = ticker or Config.TICKER
        self.timeout = timeout or Config.FETCH_TIMEOUT_SECONDS
        self.diagnostic_timeout = diagnostic_timeout or Config.DIAGNOSTIC_TIMEOUT_SECONDS
        self.api_key = Config.API_KEY if api_key is None else api_key
        self.api_key_header = api_key_header or Config.API_KEY_HEADER

        if fallback_sources is None:
            fallback_sources = Config.fallback_sources()
        self.sources = [FetchSource(name="direct", kind="direct", base_url=self.direct_url)]
        for index, (kind, url) in enumerate(fallback_sources, start=1):
            if kind not in ("path", "passthrough"):
                raise ValueError(f"Unknown fallback source kind: {kind}")
            self.sources.append(FetchSource(name=f"fallback-{index}", kind=kind, base_url=url))

        # One shared task per in-flight fetch, awaited by every concurrent caller
        self._inflight: Dict[Tuple[LeaderboardWindow, bool], asyncio.Task] = {}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def target_url(self, window: LeaderboardWindow) -> str:
        return str(httpx.URL(self.direct_url, params={'ticker': self.ticker, 'window': window.value}))

    async def acquire(self, window: LeaderboardWindow, use_cache: bool = True,
                      diagnostic: bool = False) -> FetchResult:
        """
        Get the current leaderboard payload for a window.

        Args:
            window: Window to fetch
            use_cache: Return a fresh cache entry without network access when present
            diagnostic: Use the longer diagnostic timeout

        Returns:
            FetchResult with the payload and where it came from

        Raises:
            UpstreamUnavailableError: If the direct source and all fallbacks failed
        """
        window = LeaderboardWindow.parse(window)

        if use_cache:
            entry = self.cache.get(window)
            if entry is not None:
                return FetchResult(payload=entry.payload, is_live=False, source=entry.source, from_cache=True)

        key = (window, diagnostic)
        task = self._inflight.get(key)
        if task is None:
            timeout = self.diagnostic_timeout if diagnostic else self.timeout
            task = asyncio.ensure_future(self._shared_fetch(key, window, timeout))
            task.add_done_callback(_retrieve_exception)
            self._inflight[key] = task
        else:
            logger.debug(f"Joining in-flight fetch for window {window.value}")

        # A caller that gets cancelled only stops waiting; the fetch keeps going for the others
        return await asyncio.shield(task)

    def cached(self, window: LeaderboardWindow, allow_stale: bool = True) -> Optional[FetchResult]:
        """Explicitly read the cache, optionally past its TTL. Never touches the network."""
        window = LeaderboardWindow.parse(window)
        entry = self.cache.get(window, allow_stale=allow_stale)
        if entry is None:
            return None
        return FetchResult(payload=entry.payload, is_live=False, source=entry.source, from_cache=True)

    def invalidate(self, window: Optional[LeaderboardWindow] = None):
        """Clear the cache (entirely, unless a window is given)."""
        self.cache.invalidate(window)

    async def _shared_fetch(self, key, window: LeaderboardWindow, timeout: float) -> FetchResult:
        try:
            return await self._fetch(window, timeout)
        finally:
            self._inflight.pop(key, None)

    async def _fetch(self, window: LeaderboardWindow, timeout: float) -> FetchResult:
        generation = self.cache.generation
        target = self.target_url(window)
        failed_attempts: List[FetchAttempt] = []

        for source in self.sources:
            try:
                payload = await asyncio.wait_for(self._request(source, window, target, timeout), timeout)
                validate_payload(payload)
            except (asyncio.TimeoutError, httpx.TimeoutException):
                reason = f"timed out after {timeout}s"
            except httpx.HTTPStatusError as e:
                reason = f"HTTP {e.response.status_code}"
            except httpx.HTTPError as e:
                reason = f"transport error: {type(e).__name__}: {e}"
            except MalformedPayloadError as e:
                reason = str(e)
            except ValueError as e:
                reason = f"invalid JSON: {e}"
            else:
                logger.info(
                    f"Fetched window {window.value} from {source.name} "
                    f"after {len(failed_attempts)} failed attempt(s)"
                )
                self.cache.put(window, payload, source.name, generation=generation)
                return FetchResult(
                    payload=payload,
                    is_live=True,
                    source=source.name,
                    failed_attempts=failed_attempts,
                )

            logger.warning(f"Source {source.name} failed for window {window.value}: {reason}")
            failed_attempts.append(FetchAttempt(source=source.name, reason=reason))

        logger.error(f"All {len(self.sources)} sources failed for window {window.value}")
        raise UpstreamUnavailableError(window.value, failed_attempts)

    async def _request(self, source: FetchSource, window: LeaderboardWindow, target: str, timeout: float):
        headers = {'Accept': 'application/json'}
        if source.kind == "direct" and self.api_key:
            headers[self.api_key_header] = self.api_key

        response = await self.client.get(source.build_url(window, target), headers=headers, timeout=timeout)
        response.raise_for_status()
        return source.unwrap(response.json())


def _retrieve_exception(task: asyncio.Task):
    # A failed fetch nobody is waiting on any more must not be reported as never retrieved
    if not task.cancelled():
        task.exception()
