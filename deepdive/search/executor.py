"""
Search Executor - Search & Scrape Retrieval Layer

Talks to the external search/scrape provider on behalf of the research
engine:
- search(): Google results for a query as a list of URLs
- scrape(): per-URL summaries with a query-relevance flag

Resilience:
- Round-robin endpoint pool (one address per request)
- Temporal widening ladder when a search returns too few results
- Gateway timeout (504) on a bulk scrape falls back to one call per URL
- Related URLs reported by the provider are fetched in one extra scrape
- Sliding-window rate gate shared by every outbound request
- Retries with exponential backoff on connection errors (tenacity)

Nothing here raises to the caller: a missing API key, an unreachable
provider or a malformed payload degrade to empty or failed results.
"""

import asyncio
import time
from typing import List, Dict, Any, Optional, Sequence, Tuple
from dataclasses import dataclass

import aiohttp
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from config.logging_config import get_logger
from config.settings import settings
from deepdive.core.state_manager import ScrapeOutcome, unique_in_order
from deepdive.search.endpoints import EndpointPool
from deepdive.search.rate_limiter import RateGate
from deepdive.search.strategy import search_plan

logger = get_logger(__name__)

# Sentinel distinguishing "not given" (use settings) from an explicit None key
_FROM_SETTINGS = object()

GATEWAY_TIMEOUT = 504


# ============================================================================
# HTTP TRANSPORT
# ============================================================================

@dataclass
class HttpResponse:
    """
    Minimal view of a provider response.

    Attributes:
        status: HTTP status code
        payload: Decoded JSON body (None when the body was not JSON)
        reason: HTTP reason phrase
    """
    status: int
    payload: Any = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class AiohttpTransport:
    """
    aiohttp-backed transport with tenacity retries.

    A fresh ClientSession is opened per request. Connection errors and
    timeouts are retried with exponential backoff; the final failure is
    re-raised to the executor, which turns it into an empty result.
    """

    def __init__(self, timeout: float = 30, max_retries: int = 2):
        self.timeout = timeout
        self.max_retries = max_retries

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Sequence[Tuple[str, str]]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> HttpResponse:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((aiohttp.ClientConnectionError, asyncio.TimeoutError)),
            reraise=True
        ):
            with attempt:
                return await self._send(method, url, headers, params, json_body, timeout)

    async def _send(self, method, url, headers, params, json_body, timeout) -> HttpResponse:
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.timeout)

        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.request(
                method,
                url,
                headers=headers,
                params=list(params) if params else None,
                json=json_body
            ) as response:
                try:
                    payload = await response.json(content_type=None)
                except (ValueError, aiohttp.ContentTypeError):
                    payload = None

                return HttpResponse(
                    status=response.status,
                    payload=payload,
                    reason=response.reason or ""
                )


# ============================================================================
# SEARCH EXECUTOR
# ============================================================================

class SearchExecutor:
    """
    Search and scrape against the external provider.

    Design Decisions:
    - Endpoint pool and rate gate are injected so several executors can
      share one rotation cursor and one quota
    - The transport is injected so tests run without network
    - Secondary (related URL) scrape failures never discard the primary
      outcomes

    Example:
        >>> executor = SearchExecutor()
        >>> urls = await executor.search("solid state batteries", max_results=10)
        >>> outcomes = await executor.scrape(urls, "solid state batteries")
        >>> [o.url for o in outcomes if o.is_query_related]
    """

    def __init__(
        self,
        api_key: Any = _FROM_SETTINGS,
        endpoint_pool: Optional[EndpointPool] = None,
        transport: Optional[AiohttpTransport] = None,
        rate_gate: Optional[RateGate] = None,
        min_results: Optional[int] = None,
        search_timeout: Optional[float] = None,
        scrape_timeout: Optional[float] = None
    ):
        """
        Initialize search executor.

        Args:
            api_key: Provider API key (settings.SEARCH_API_KEY when omitted)
            endpoint_pool: Shared round-robin pool (built from settings if None)
            transport: HTTP transport (aiohttp-backed if None)
            rate_gate: Shared rate gate (no throttling if None)
            min_results: Widen the timeframe while below this many URLs
            search_timeout: Seconds per search request
            scrape_timeout: Seconds per scrape request
        """
        self.api_key = settings.SEARCH_API_KEY if api_key is _FROM_SETTINGS else api_key
        self.endpoint_pool = endpoint_pool or EndpointPool.from_settings()
        self.transport = transport or AiohttpTransport(
            timeout=settings.SEARCH_TIMEOUT,
            max_retries=settings.HTTP_MAX_RETRIES
        )
        self.rate_gate = rate_gate
        self.min_results = settings.SEARCH_MIN_RESULTS if min_results is None else min_results
        self.search_timeout = search_timeout or settings.SEARCH_TIMEOUT
        self.scrape_timeout = scrape_timeout or settings.SCRAPE_TIMEOUT

        self.stats = {
            "searches": 0,
            "search_requests": 0,
            "search_failures": 0,
            "widened_searches": 0,
            "scrapes": 0,
            "scrape_requests": 0,
            "scrape_failures": 0,
            "gateway_fallbacks": 0,
            "related_scrapes": 0,
            "total_urls": 0
        }

        logger.info(
            "Search executor initialized",
            extra={
                "api_key_present": bool(self.api_key),
                "endpoints": self.endpoint_pool.endpoints,
                "rate_limited": rate_gate is not None
            }
        )

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def search(
        self,
        query: str,
        max_results: int = 10,
        sites: Optional[List[str]] = None
    ) -> List[str]:
        """
        Search the provider and return result URLs.

        Starts at the heuristic timeframe and widens one ladder step at a
        time while fewer than `min_results` unique URLs are known.

        Args:
            query: Search query string
            max_results: Maximum URLs to return
            sites: Restrict results to these sites

        Returns:
            Unique URLs in first-seen order (empty on any total failure)
        """
        self.stats["searches"] += 1

        if not self.api_key:
            logger.error("Missing SEARCH_API_KEY, search skipped", extra={"query": query})
            return []

        start_time = time.time()
        merged: List[str] = []
        steps_taken = 0

        for timeframe in search_plan(query):
            if steps_taken and len(merged) >= self.min_results:
                break
            if steps_taken:
                self.stats["widened_searches"] += 1
                logger.debug(
                    "Widening search timeframe",
                    extra={"query": query, "timeframe": timeframe or "none", "found": len(merged)}
                )

            step_results = await self._search_once(query, max_results, timeframe, sites)
            merged = unique_in_order([*merged, *step_results])
            steps_taken += 1

        results = merged[:max_results]
        self.stats["total_urls"] += len(results)

        logger.info(
            "Search completed",
            extra={
                "query": query,
                "results_count": len(results),
                "steps": steps_taken,
                "latency_ms": f"{(time.time() - start_time) * 1000:.1f}"
            }
        )
        return results

    async def scrape(self, urls: List[str], query: str) -> List[ScrapeOutcome]:
        """
        Scrape URLs through the provider.

        One bulk request; on a gateway timeout, one request per URL. After a
        successful bulk request the related URLs reported by the provider
        (minus the primary batch) are scraped in one extra request and
        merged in for URLs not seen yet.

        Returns:
            One outcome per URL; failed URLs have summary None
        """
        self.stats["scrapes"] += 1

        if not self.api_key:
            logger.error("Missing SEARCH_API_KEY, scrape skipped", extra={"urls": len(urls)})
            return [ScrapeOutcome.failed(url) for url in urls]

        if not urls:
            return []

        try:
            response = await self._post_scrape(list(urls), query)
        except Exception as e:
            self.stats["scrape_failures"] += 1
            logger.error("Scrape request failed", extra={"error": str(e), "urls": len(urls)})
            return [ScrapeOutcome.failed(url) for url in urls]

        if response.status == GATEWAY_TIMEOUT:
            self.stats["gateway_fallbacks"] += 1
            logger.warning(
                "Bulk scrape timed out (504), falling back to per-URL scraping",
                extra={"urls": len(urls)}
            )
            return list(await asyncio.gather(*(self._scrape_single(url, query) for url in urls)))

        if not response.ok:
            self.stats["scrape_failures"] += 1
            logger.error(
                "Scrape API returned a non-OK response",
                extra={"status": response.status, "reason": response.reason}
            )
            return [ScrapeOutcome.failed(url) for url in urls]

        scraped = self._scraped_items(response)
        if scraped is None:
            self.stats["scrape_failures"] += 1
            logger.error("Unexpected scrape API response format")
            return [ScrapeOutcome.failed(url) for url in urls]

        merged: Dict[str, ScrapeOutcome] = {}
        for item in scraped:
            outcome = self._parse_item(item)
            merged[outcome.url] = outcome

        related = unique_in_order(
            related_url
            for outcome in merged.values()
            for related_url in outcome.related_urls
            if related_url not in merged
        )
        if related:
            for outcome in await self._scrape_related(related, query):
                if outcome.url not in merged:
                    merged[outcome.url] = outcome

        logger.info("Scrape completed", extra={"total_results": len(merged)})
        return list(merged.values())

    def get_statistics(self) -> Dict[str, Any]:
        """Counters for this executor (and its rate gate, when present)."""
        stats = dict(self.stats)
        if self.rate_gate is not None:
            stats["rate_gate"] = self.rate_gate.get_statistics()
        return stats

    # ========================================================================
    # SEARCH HELPERS
    # ========================================================================

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key}

    async def _throttle(self) -> None:
        if self.rate_gate is not None:
            await self.rate_gate.acquire()

    async def _search_once(
        self,
        query: str,
        max_results: int,
        timeframe: Optional[str],
        sites: Optional[List[str]]
    ) -> List[str]:
        """One provider search at one timeframe. Any failure yields []."""
        params: List[Tuple[str, str]] = [
            ("query", query),
            ("max_results", str(max_results))
        ]
        if timeframe:
            params.append(("timeframe", timeframe))
        for site in sites or []:
            params.append(("sites", site))

        url = f"{self.endpoint_pool.next()}{settings.SEARCH_PATH}"
        self.stats["search_requests"] += 1

        try:
            await self._throttle()
            response = await self.transport.request(
                "GET",
                url,
                headers=self._headers(),
                params=params,
                timeout=self.search_timeout
            )
        except Exception as e:
            self.stats["search_failures"] += 1
            logger.error(
                "Search request failed",
                extra={"query": query, "timeframe": timeframe, "error": str(e)}
            )
            return []

        if not response.ok:
            self.stats["search_failures"] += 1
            logger.error(
                "Search API returned a non-OK response",
                extra={"status": response.status, "reason": response.reason}
            )
            return []

        payload = response.payload if isinstance(response.payload, dict) else {}
        results = payload.get("results")
        if not isinstance(results, list):
            return []

        return [r for r in results if isinstance(r, str)][:max_results]

    # ========================================================================
    # SCRAPE HELPERS
    # ========================================================================

    async def _post_scrape(self, urls: List[str], query: str) -> HttpResponse:
        url = f"{self.endpoint_pool.next()}{settings.SCRAPE_PATH}"
        self.stats["scrape_requests"] += 1
        await self._throttle()
        return await self.transport.request(
            "POST",
            url,
            headers={**self._headers(), "Content-Type": "application/json"},
            json_body={"urls": urls, "query": query},
            timeout=self.scrape_timeout
        )

    @staticmethod
    def _scraped_items(response: HttpResponse) -> Optional[List[Any]]:
        payload = response.payload
        if not isinstance(payload, dict) or not isinstance(payload.get("scraped"), list):
            return None
        return payload["scraped"]

    @staticmethod
    def _item_valid(item: Any) -> bool:
        return isinstance(item, dict) and item.get("status") == 200 and not item.get("error")

    @staticmethod
    def _related_urls(item: Any) -> Tuple[str, ...]:
        related = item.get("relatedURLs") if isinstance(item, dict) else None
        if not isinstance(related, list):
            return ()
        return tuple(u for u in related if isinstance(u, str))

    def _parse_item(self, item: Any, url: Optional[str] = None) -> ScrapeOutcome:
        """
        Provider item → ScrapeOutcome. `url` overrides the item's own URL.

        A failed item keeps the related URLs it reports; its summary and
        relevance stay failed.
        """
        item_url = url or (item.get("url") if isinstance(item, dict) else None) or ""
        related = self._related_urls(item)

        if not self._item_valid(item):
            return ScrapeOutcome.failed(item_url, related_urls=related)

        return ScrapeOutcome(
            url=item_url,
            summary=item.get("Summary") or "",
            is_query_related=item.get("IsQueryRelated") is True,
            related_urls=related
        )

    async def _scrape_single(self, url: str, query: str) -> ScrapeOutcome:
        """Per-URL fallback call; the outcome is positional (keyed by `url`)."""
        try:
            response = await self._post_scrape([url], query)
        except Exception as e:
            logger.error("Individual scrape request failed", extra={"url": url, "error": str(e)})
            return ScrapeOutcome.failed(url)

        if not response.ok:
            logger.error(
                "Individual scrape API call failed",
                extra={"url": url, "status": response.status, "reason": response.reason}
            )
            return ScrapeOutcome.failed(url)

        scraped = self._scraped_items(response)
        if not scraped:
            logger.error("Unexpected individual scrape API response format", extra={"url": url})
            return ScrapeOutcome.failed(url)

        outcome = self._parse_item(scraped[0], url=url)
        # Related URLs are only followed after a successful bulk call
        outcome.related_urls = ()
        return outcome

    async def _scrape_related(self, urls: List[str], query: str) -> List[ScrapeOutcome]:
        """Secondary scrape of related URLs. Failures return [] and are logged."""
        self.stats["related_scrapes"] += 1
        logger.info("Scraping related URLs", extra={"count": len(urls)})

        try:
            response = await self._post_scrape(urls, query)
        except Exception as e:
            logger.error("Related scrape request failed", extra={"error": str(e)})
            return []

        if not response.ok:
            logger.error(
                "Related scrape API call failed",
                extra={"status": response.status, "reason": response.reason}
            )
            return []

        scraped = self._scraped_items(response)
        if scraped is None:
            logger.error("Unexpected related scrape API response format")
            return []

        outcomes = []
        for item in scraped:
            outcome = self._parse_item(item)
            outcome.related_urls = ()
            outcomes.append(outcome)
        return outcomes


def create_search_executor(
    endpoint_pool: Optional[EndpointPool] = None,
    rate_gate: Optional[RateGate] = None
) -> SearchExecutor:
    """
    Factory function to create a search executor from settings.

    The rate gate defaults to one sized by SEARCH_RATE_LIMIT.
    """
    return SearchExecutor(
        endpoint_pool=endpoint_pool or EndpointPool.from_settings(),
        rate_gate=rate_gate or RateGate.from_settings()
    )


__all__ = [
    "HttpResponse",
    "AiohttpTransport",
    "SearchExecutor",
    "create_search_executor",
]
