"""Tests for api/audnexus.py -- payload mapping and HTTP error handling."""

import asyncio

import httpx
import pytest

from audiobook_organizer.api.audnexus import AudnexusClient, candidate_from_payload
from audiobook_organizer.errors import (
    ProviderError,
    ProviderNotFound,
    ProviderTransientError,
)
from audiobook_organizer.models import ErrorCategory, SeriesInfo

BOOK = {
    "asin": "B08G9PRS1K",
    "title": "Project Hail Mary",
    "subtitle": "A Novel",
    "authors": [{"asin": "B00G0WYW92", "name": "Andy Weir"}],
    "narrators": [{"name": "Ray Porter"}],
    "publisherName": "Audible Studios",
    "releaseDate": "2021-05-04T00:00:00.000Z",
    "language": "english",
    "genres": [{"asin": "18580606011", "name": "Science Fiction & Fantasy", "type": "genre"}],
    "summary": "<p>Ryland Grace is the <b>sole</b> survivor.</p>",
    "copyright": 2021,
    "image": "https://m.media-amazon.com/images/I/cover.jpg",
    "runtimeLengthMin": 970,
    "isAbridged": False,
}


def _run(handler, call):
    """Run `call(client)` against a client backed by `handler`."""

    async def main():
        async with AudnexusClient(transport=httpx.MockTransport(handler)) as client:
            return await call(client)

    return asyncio.run(main())


class TestCandidateFromPayload:
    def test_full_payload(self):
        c = candidate_from_payload(BOOK)
        assert c.title == "Project Hail Mary"
        assert c.asin == "B08G9PRS1K"
        assert c.primary_author == "Andy Weir"
        assert c.authors[0].asin == "B00G0WYW92"
        assert c.primary_narrator == "Ray Porter"
        assert c.publisher == "Audible Studios"
        assert c.year == "2021"
        assert c.genres == ["Science Fiction & Fantasy"]
        assert c.summary == "Ryland Grace is the sole survivor."
        assert c.copyright == "2021"
        assert c.runtime_minutes == 970
        assert c.series is None

    def test_series_primary(self):
        c = candidate_from_payload(
            {"title": "Leviathan Wakes", "seriesPrimary": {"name": "The Expanse", "position": "1"}}
        )
        assert c.series == SeriesInfo("The Expanse", "1")

    def test_flat_series_fields(self):
        c = candidate_from_payload(
            {"title": "Leviathan Wakes", "seriesName": "The Expanse", "seriesPosition": 1}
        )
        assert c.series == SeriesInfo("The Expanse", "1")

    def test_plain_string_lists(self):
        c = candidate_from_payload(
            {"title": "Dune", "authors": ["Frank Herbert", "  "], "genres": ["Classics"]}
        )
        assert [a.name for a in c.authors] == ["Frank Herbert"]
        assert c.genres == ["Classics"]

    def test_bad_runtime(self):
        assert candidate_from_payload({"title": "Dune", "runtimeLengthMin": "n/a"}).runtime_minutes is None

    def test_nulls(self):
        c = candidate_from_payload({"title": "Dune", "subtitle": None, "summary": None})
        assert c.subtitle == ""
        assert c.summary == ""


class TestLookup:
    def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=BOOK)

        candidate = _run(handler, lambda c: c.lookup_by_identifier("B08G9PRS1K"))
        assert candidate.title == "Project Hail Mary"
        assert seen[0].url.path == "/books/B08G9PRS1K"
        assert seen[0].url.params["region"] == "us"

    def test_not_found(self):
        with pytest.raises(ProviderNotFound) as exc:
            _run(
                lambda r: httpx.Response(404, json={"error": "Not found"}),
                lambda c: c.lookup_by_identifier("B000000000"),
            )
        assert exc.value.endpoint == "/books/B000000000"

    def test_payload_without_title(self):
        with pytest.raises(ProviderNotFound):
            _run(lambda r: httpx.Response(200, json={}), lambda c: c.lookup_by_identifier("B0X1"))

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_transient_status(self, status):
        with pytest.raises(ProviderTransientError) as exc:
            _run(lambda r: httpx.Response(status), lambda c: c.lookup_by_identifier("B0X1"))
        assert exc.value.status_code == status
        assert exc.value.category == ErrorCategory.TRANSIENT

    def test_permanent_status(self):
        with pytest.raises(ProviderError) as exc:
            _run(lambda r: httpx.Response(400), lambda c: c.lookup_by_identifier("B0X1"))
        assert not isinstance(exc.value, ProviderTransientError)
        assert exc.value.category == ErrorCategory.PERMANENT

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderTransientError, match="Network error"):
            _run(handler, lambda c: c.lookup_by_identifier("B0X1"))

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(ProviderTransientError, match="Timed out"):
            _run(handler, lambda c: c.lookup_by_identifier("B0X1"))

    def test_invalid_json(self):
        with pytest.raises(ProviderError, match="Invalid JSON"):
            _run(
                lambda r: httpx.Response(200, text="<html>oops</html>"),
                lambda c: c.lookup_by_identifier("B0X1"),
            )

    def test_empty_asin(self):
        with pytest.raises(ValueError):
            _run(lambda r: httpx.Response(200, json=BOOK), lambda c: c.lookup_by_identifier(""))


class TestSearch:
    def test_list_response(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[BOOK, {"title": "Artemis"}])

        results = _run(
            handler, lambda c: c.search(title="Project Hail Mary", author="Andy Weir")
        )
        assert [r.title for r in results] == ["Project Hail Mary", "Artemis"]
        params = seen[0].url.params
        assert seen[0].url.path == "/books"
        assert params["title"] == "Project Hail Mary"
        assert params["author"] == "Andy Weir"
        assert params["region"] == "us"
        assert "narrator" not in params

    def test_wrapped_response(self):
        results = _run(
            lambda r: httpx.Response(200, json={"results": [BOOK]}),
            lambda c: c.search(title="Project Hail Mary"),
        )
        assert len(results) == 1

    def test_not_found_is_empty(self):
        results = _run(lambda r: httpx.Response(404), lambda c: c.search(author="Nobody"))
        assert results == []

    def test_requires_a_term(self):
        with pytest.raises(ValueError):
            _run(lambda r: httpx.Response(200, json=[]), lambda c: c.search())

    def test_server_error_propagates(self):
        with pytest.raises(ProviderTransientError):
            _run(lambda r: httpx.Response(502), lambda c: c.search(title="Dune"))
