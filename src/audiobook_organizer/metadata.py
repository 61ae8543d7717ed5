"""Metadata resolution: cached, retried provider calls with event reporting."""

from __future__ import annotations

from loguru import logger

from .api import MetadataProvider
from .concurrency import retry
from .errors import ProviderNotFound, is_retryable
from .events import EventBus, MetadataEvents
from .models import MetadataCandidate

log = logger.bind(stage="metadata")


class MetadataResolver:
    """Wraps a MetadataProvider with an ASIN cache and retry/backoff.

    Only transient provider errors (429, 5xx, network) are retried.
    """

    def __init__(
        self,
        provider: MetadataProvider,
        events: EventBus,
        *,
        region: str = "us",
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
        jitter: float = 0.1,
    ) -> None:
        self.provider = provider
        self.events = events
        self.region = region
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._cache: dict[str, MetadataCandidate] = {}

    async def _with_retry(self, fn):
        return await retry(
            fn,
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
            should_retry=is_retryable,
        )

    async def lookup_by_asin(self, asin: str) -> MetadataCandidate:
        """Fetch a book by ASIN, serving repeats from the cache.

        Raises ProviderNotFound when the provider has no such book.
        """
        if not asin:
            raise ValueError("ASIN is required")

        cache_key = f"asin:{asin}:{self.region}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            log.debug(f"Metadata cache hit for ASIN: {asin}")
            return cached

        self.events.emit(MetadataEvents.LOOKUP_STARTED, {"asin": asin})
        try:
            candidate = await self._with_retry(lambda: self.provider.lookup_by_identifier(asin))
        except Exception as e:
            log.warning(f"ASIN lookup failed for {asin}: {e}")
            self.events.emit(
                MetadataEvents.LOOKUP_FAILED,
                {"asin": asin, "error": str(e), "not_found": isinstance(e, ProviderNotFound)},
            )
            raise

        self._cache[cache_key] = candidate
        log.info(f"Found metadata for ASIN {asin}: {candidate.title!r}")
        self.events.emit(
            MetadataEvents.LOOKUP_COMPLETED, {"asin": asin, "title": candidate.title}
        )
        return candidate

    async def search(
        self,
        title: str | None = None,
        author: str | None = None,
        narrator: str | None = None,
    ) -> list[MetadataCandidate]:
        """Search the provider. At least one of the terms is required."""
        if not (title or author or narrator):
            raise ValueError("At least one search parameter is required")

        query = {"title": title, "author": author, "narrator": narrator}
        self.events.emit(MetadataEvents.SEARCH_STARTED, query)
        try:
            results = await self._with_retry(
                lambda: self.provider.search(title=title, author=author, narrator=narrator)
            )
        except Exception as e:
            log.warning(f"Metadata search failed ({query}): {e}")
            self.events.emit(MetadataEvents.SEARCH_FAILED, {**query, "error": str(e)})
            raise

        log.debug(f"Search returned {len(results)} candidate(s) for title={title!r}")
        self.events.emit(MetadataEvents.SEARCH_COMPLETED, {**query, "count": len(results)})
        return results

    def clear_cache(self) -> int:
        size = len(self._cache)
        self._cache.clear()
        log.info(f"Metadata cache cleared ({size} items)")
        return size
