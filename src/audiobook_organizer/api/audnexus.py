"""Audnexus book metadata client.

Looks books up by ASIN and searches by title/author/narrator. Raw JSON is
mapped to MetadataCandidate here and never leaves this module.

Error mapping:
    404                      -> ProviderNotFound
    429, 5xx, network errors -> ProviderTransientError (retriable)
    other 4xx                -> ProviderError (permanent)
"""

from __future__ import annotations

import re

import httpx
from loguru import logger

from ..errors import (
    ProviderError,
    ProviderNotFound,
    ProviderTransientError,
    categorize_status_code,
)
from ..models import Contributor, ErrorCategory, MetadataCandidate, SeriesInfo

log = logger.bind(stage="audnexus")

DEFAULT_BASE_URL = "https://api.audnex.us"


def _contributors(raw: list | None) -> list[Contributor]:
    people = []
    for item in raw or []:
        if isinstance(item, str):
            name, asin = item, ""
        else:
            name, asin = item.get("name", "") or "", item.get("asin", "") or ""
        if name.strip():
            people.append(Contributor(name=name.strip(), asin=asin))
    return people


def _series(payload: dict) -> SeriesInfo | None:
    primary = payload.get("seriesPrimary")
    if isinstance(primary, dict) and primary.get("name"):
        position = primary.get("position")
        return SeriesInfo(
            name=primary["name"],
            position=str(position) if position not in (None, "") else None,
        )
    name = payload.get("seriesName")
    if name:
        position = payload.get("seriesPosition")
        return SeriesInfo(name=name, position=str(position) if position not in (None, "") else None)
    return None


def _genres(raw: list | None) -> list[str]:
    names = []
    for item in raw or []:
        name = item if isinstance(item, str) else (item.get("name") or "")
        if name:
            names.append(name)
    return names


def _strip_html(text: str) -> str:
    """Strip HTML tags from text."""
    return re.sub(r"<[^>]+>", "", text).strip()


def candidate_from_payload(payload: dict) -> MetadataCandidate:
    """Map one Audnexus book object (camelCase JSON) to a MetadataCandidate."""
    runtime = payload.get("runtimeLengthMin")
    try:
        runtime_minutes = int(runtime) if runtime not in (None, "") else None
    except (TypeError, ValueError):
        runtime_minutes = None

    return MetadataCandidate(
        title=payload.get("title", "") or "",
        asin=payload.get("asin", "") or "",
        subtitle=payload.get("subtitle", "") or "",
        authors=_contributors(payload.get("authors")),
        narrators=_contributors(payload.get("narrators")),
        series=_series(payload),
        publisher=payload.get("publisherName", "") or "",
        release_date=payload.get("releaseDate", "") or "",
        language=payload.get("language", "") or "",
        genres=_genres(payload.get("genres")),
        summary=_strip_html(payload.get("summary", "") or ""),
        copyright=str(payload.get("copyright", "") or ""),
        cover_url=payload.get("image", "") or "",
        runtime_minutes=runtime_minutes,
        is_abridged=bool(payload.get("isAbridged", False)),
    )


class AudnexusClient:
    """Async Audnexus client. Use as an async context manager or call aclose()."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        region: str = "us",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.region = region
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> AudnexusClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def lookup_by_identifier(self, asin: str) -> MetadataCandidate:
        if not asin:
            raise ValueError("ASIN is required")
        endpoint = f"/books/{asin}"
        log.debug(f"Audnexus lookup: asin={asin} region={self.region}")
        data = await self._get(endpoint, {"region": self.region}, query=asin)
        if not isinstance(data, dict) or not data.get("title"):
            raise ProviderNotFound(asin, endpoint=endpoint)
        return candidate_from_payload(data)

    async def search(
        self,
        title: str | None = None,
        author: str | None = None,
        narrator: str | None = None,
    ) -> list[MetadataCandidate]:
        params = {
            k: v
            for k, v in (("title", title), ("author", author), ("narrator", narrator))
            if v
        }
        if not params:
            raise ValueError("At least one of title, author or narrator is required")
        params["region"] = self.region

        log.debug(f"Audnexus search: {params}")
        query = " / ".join(str(v) for k, v in params.items() if k != "region")
        try:
            data = await self._get("/books", params, query=query)
        except ProviderNotFound:
            return []

        if isinstance(data, dict):
            items = data.get("results") or data.get("books") or []
        else:
            items = data or []
        results = [candidate_from_payload(item) for item in items if isinstance(item, dict)]
        log.debug(f"Audnexus results: {len(results)} book(s)")
        return results

    async def _get(self, endpoint: str, params: dict, query: str):
        try:
            resp = await self._client.get(endpoint, params=params)
        except httpx.TimeoutException as e:
            raise ProviderTransientError(
                f"Timed out calling {endpoint}: {e}", endpoint=endpoint
            ) from e
        except httpx.HTTPError as e:
            raise ProviderTransientError(
                f"Network error calling {endpoint}: {e}", endpoint=endpoint
            ) from e

        status = resp.status_code
        if status == 404:
            raise ProviderNotFound(query, endpoint=endpoint)
        if status >= 400:
            message = f"Audnexus returned HTTP {status} for {endpoint}"
            if categorize_status_code(status) == ErrorCategory.TRANSIENT:
                raise ProviderTransientError(message, status_code=status, endpoint=endpoint)
            raise ProviderError(message, status_code=status, endpoint=endpoint)

        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(
                f"Invalid JSON from {endpoint}: {e}", status_code=status, endpoint=endpoint
            ) from e
