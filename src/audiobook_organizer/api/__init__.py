"""External metadata providers.

Submodules:
    audnexus -- Audnexus book lookup/search client over httpx.AsyncClient and
                the payload adapter that turns its JSON into MetadataCandidate.

Anything that implements MetadataProvider can stand in for it.
"""

from typing import Protocol

from ..models import MetadataCandidate


class MetadataProvider(Protocol):
    async def lookup_by_identifier(self, asin: str) -> MetadataCandidate:
        """Fetch one book by ASIN. Raises ProviderNotFound when unknown."""
        ...

    async def search(
        self,
        title: str | None = None,
        author: str | None = None,
        narrator: str | None = None,
    ) -> list[MetadataCandidate]:
        ...
