"""Tests for orchestrator.py -- end-to-end batch processing with fakes."""

import asyncio
from pathlib import Path

import pytest

from audiobook_organizer.config import OrganizerConfig
from audiobook_organizer.errors import (
    ConfigError,
    ExternalToolError,
    ProviderError,
    ProviderNotFound,
    ScanError,
)
from audiobook_organizer.events import BatchEvents, EventBus, FileEvents, MetadataEvents
from audiobook_organizer.models import (
    BookStatus,
    Contributor,
    MetadataCandidate,
    OrchestratorState,
)
from audiobook_organizer.orchestrator import Orchestrator

DUNE = MetadataCandidate(title="Dune", asin="B0DUNE0001", authors=[Contributor("Frank Herbert")])
HAIL_MARY = MetadataCandidate(
    title="Project Hail Mary", asin="B08G9PRS1K", authors=[Contributor("Andy Weir")]
)


class FakeProvider:
    """Search returns the whole catalog; the scorer picks the winner."""

    def __init__(self, catalog=(), by_asin=None, fail_titles=(), delay=0.0):
        self.catalog = list(catalog)
        self.by_asin = dict(by_asin or {})
        self.fail_titles = set(fail_titles)
        self.delay = delay
        self.lookups = []
        self.searches = []
        self.active = 0
        self.peak = 0

    async def lookup_by_identifier(self, asin):
        self.lookups.append(asin)
        if asin not in self.by_asin:
            raise ProviderNotFound(asin)
        return self.by_asin[asin]

    async def search(self, title=None, author=None, narrator=None):
        self.searches.append((title, author))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            if title in self.fail_titles:
                raise ProviderError("bad request", status_code=400)
            return list(self.catalog)
        finally:
            self.active -= 1


class FakeTagCodec:
    def __init__(self, tags=None, read_error=None):
        self.tags = tags or {}
        self.read_error = read_error
        self.written = []

    def read(self, path):
        if self.read_error is not None:
            raise self.read_error
        return dict(self.tags.get(Path(path).name, {}))

    def write(self, path, tags):
        self.written.append((Path(path), tags))
        return True


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in OrganizerConfig.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)


def _config(tmp_path, **overrides):
    values = dict(
        log_dir=tmp_path / "logs",
        min_file_size=1,
        retry_initial_delay=0,
        retry_max_delay=0,
    )
    values.update(overrides)
    return OrganizerConfig(_env_file=None, **values)


def _book(root: Path, relative: str, size: int = 64) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\0" * size)
    return path


def _run(orchestrator, root, dest=None):
    return asyncio.run(orchestrator.process_directory(root, dest))


class TestIdentification:
    def test_asin_lookup_accepted(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Andy Weir - Project Hail Mary [B08G9PRS1K].m4b")
        provider = FakeProvider(by_asin={"B08G9PRS1K": HAIL_MARY})

        result = _run(Orchestrator(_config(tmp_path), provider, tag_codec=FakeTagCodec()), source)
        [book] = result.books
        assert book.status == BookStatus.PROCESSED
        assert book.metadata["title"] == "Project Hail Mary"
        assert book.score == pytest.approx(1.0)
        assert provider.lookups == ["B08G9PRS1K"]
        assert provider.searches == []

    def test_search_when_no_asin(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Dune.m4b")
        provider = FakeProvider(catalog=[HAIL_MARY, DUNE])

        result = _run(Orchestrator(_config(tmp_path), provider, tag_codec=FakeTagCodec()), source)
        [book] = result.books
        assert book.status == BookStatus.PROCESSED
        assert book.metadata["asin"] == "B0DUNE0001"
        assert provider.searches == [("Dune", None)]

    def test_unknown_asin_falls_back_to_search(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Dune [B0DUNE0009].m4b")
        events = EventBus()
        provider = FakeProvider(catalog=[DUNE])

        result = _run(
            Orchestrator(_config(tmp_path), provider, events=events, tag_codec=FakeTagCodec()),
            source,
        )
        assert result.books[0].status == BookStatus.PROCESSED
        assert provider.lookups == ["B0DUNE0009"]
        assert provider.searches == [("Dune", None)]
        assert events.last_event(MetadataEvents.LOOKUP_FAILED)["not_found"] is True

    def test_tags_drive_search(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "track.m4b")
        codec = FakeTagCodec({"track.m4b": {"album": "Dune", "artist": "Frank Herbert"}})
        provider = FakeProvider(catalog=[DUNE])

        result = _run(Orchestrator(_config(tmp_path), provider, tag_codec=codec), source)
        assert result.books[0].status == BookStatus.PROCESSED
        assert provider.searches == [("Dune", "Frank Herbert")]

    def test_no_candidates_is_metadata_only(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Andy Weir - Artemis.m4b")

        result = _run(
            Orchestrator(_config(tmp_path), FakeProvider(), tag_codec=FakeTagCodec()), source
        )
        [book] = result.books
        assert book.status == BookStatus.METADATA_ONLY
        assert book.metadata["title"] == "Artemis"
        assert book.metadata["author"] == "Andy Weir"
        assert result.metadata_only == 1

    def test_low_score_is_metadata_only(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Dune.m4b")
        provider = FakeProvider(catalog=[MetadataCandidate(title="Completely Different Story")])

        result = _run(Orchestrator(_config(tmp_path), provider, tag_codec=FakeTagCodec()), source)
        assert result.books[0].status == BookStatus.METADATA_ONLY

    def test_tag_read_failure_is_not_fatal(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Dune.m4b")
        codec = FakeTagCodec(read_error=ExternalToolError("ffprobe", 1, "Invalid data"))

        result = _run(
            Orchestrator(_config(tmp_path), FakeProvider(catalog=[DUNE]), tag_codec=codec), source
        )
        assert result.books[0].status == BookStatus.PROCESSED


class TestFailures:
    def test_provider_error_fails_one_book(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Broken.m4b")
        _book(source, "Dune.m4b")
        events = EventBus()
        failures = []
        events.subscribe(FileEvents.PROCESSING_FAILED, failures.append)
        provider = FakeProvider(catalog=[DUNE], fail_titles={"Broken"})

        result = _run(
            Orchestrator(_config(tmp_path), provider, events=events, tag_codec=FakeTagCodec()),
            source,
        )
        assert [b.name for b in result.books] == ["Broken", "Dune"]
        assert result.books[0].status == BookStatus.FAILED
        assert "bad request" in result.books[0].error
        assert result.books[1].status == BookStatus.PROCESSED
        assert (result.failed, result.processed, result.total) == (1, 1, 2)
        assert failures == [{"name": "Broken", "error": "bad request"}]

    def test_missing_root(self, tmp_path):
        events = EventBus()
        orchestrator = Orchestrator(
            _config(tmp_path), FakeProvider(), events=events, tag_codec=FakeTagCodec()
        )
        with pytest.raises(ScanError):
            _run(orchestrator, tmp_path / "missing")
        assert orchestrator.state == OrchestratorState.FAILED
        assert "does not exist" in events.last_event(BatchEvents.FAILED)["error"]

    def test_invalid_scan_settings(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Dune.m4b")
        events = EventBus()
        orchestrator = Orchestrator(
            _config(tmp_path, max_scan_depth=0),
            FakeProvider(),
            events=events,
            tag_codec=FakeTagCodec(),
        )
        with pytest.raises(ConfigError, match="max_depth"):
            _run(orchestrator, source)
        assert orchestrator.state == OrchestratorState.FAILED
        assert events.last_event(BatchEvents.FAILED) is not None

    def test_destination_conflict_fails_book(self, tmp_path):
        source = tmp_path / "incoming"
        dest = tmp_path / "library"
        _book(source, "Dune.m4b", size=64)
        _book(dest, "Frank Herbert/Dune.m4b", size=10)

        result = _run(
            Orchestrator(_config(tmp_path), FakeProvider(catalog=[DUNE]), tag_codec=FakeTagCodec()),
            source,
            dest,
        )
        [book] = result.books
        assert book.status == BookStatus.FAILED
        assert "already exists" in book.error


class TestOrganizing:
    def test_copy_into_library(self, tmp_path):
        source = tmp_path / "incoming"
        dest = tmp_path / "library"
        original = _book(source, "Dune.m4b")

        result = _run(
            Orchestrator(_config(tmp_path), FakeProvider(catalog=[DUNE]), tag_codec=FakeTagCodec()),
            source,
            dest,
        )
        target = dest / "Frank Herbert" / "Dune.m4b"
        assert result.books[0].targets == [target]
        assert target.exists()
        assert original.exists()

    def test_move_into_library(self, tmp_path):
        source = tmp_path / "incoming"
        dest = tmp_path / "library"
        original = _book(source, "Frank Herbert/Dune.m4b")

        _run(
            Orchestrator(
                _config(tmp_path, move_files=True),
                FakeProvider(catalog=[DUNE]),
                tag_codec=FakeTagCodec(),
            ),
            source,
            dest,
        )
        assert (dest / "Frank Herbert" / "Dune.m4b").exists()
        assert not original.exists()
        assert not (source / "Frank Herbert").exists()
        assert source.exists()

    def test_multi_file_book(self, tmp_path):
        source = tmp_path / "incoming"
        dest = tmp_path / "library"
        _book(source, "MyBook/01 - Chapter.mp3")
        _book(source, "MyBook/02 - Chapter.mp3")
        catalog = [MetadataCandidate(title="MyBook", authors=[Contributor("Some Author")])]

        result = _run(
            Orchestrator(_config(tmp_path), FakeProvider(catalog=catalog), tag_codec=FakeTagCodec()),
            source,
            dest,
        )
        [book] = result.books
        assert book.files == 2
        book_dir = dest / "Some Author" / "MyBook"
        assert book.targets == [book_dir / "Part 01.mp3", book_dir / "Part 02.mp3"]
        assert all(t.exists() for t in book.targets)

    def test_second_run_is_skipped(self, tmp_path):
        source = tmp_path / "incoming"
        dest = tmp_path / "library"
        _book(source, "Dune.m4b")
        config = _config(tmp_path)

        first = _run(Orchestrator(config, FakeProvider(catalog=[DUNE]), tag_codec=FakeTagCodec()), source, dest)
        second = _run(Orchestrator(config, FakeProvider(catalog=[DUNE]), tag_codec=FakeTagCodec()), source, dest)
        assert first.books[0].status == BookStatus.PROCESSED
        assert second.books[0].status == BookStatus.SKIPPED
        assert second.skipped == 1

    def test_dry_run_writes_nothing(self, tmp_path):
        source = tmp_path / "incoming"
        dest = tmp_path / "library"
        _book(source, "Dune.m4b")
        codec = FakeTagCodec()

        result = _run(
            Orchestrator(
                _config(tmp_path, dry_run=True, write_tags=True),
                FakeProvider(catalog=[DUNE]),
                tag_codec=codec,
            ),
            source,
            dest,
        )
        assert result.books[0].status == BookStatus.PROCESSED
        assert result.books[0].targets == [dest / "Frank Herbert" / "Dune.m4b"]
        assert not dest.exists()
        assert codec.written == []

    def test_no_destination_identifies_only(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Dune.m4b")

        result = _run(
            Orchestrator(_config(tmp_path), FakeProvider(catalog=[DUNE]), tag_codec=FakeTagCodec()),
            source,
        )
        assert result.books[0].status == BookStatus.PROCESSED
        assert result.books[0].targets == []

    def test_write_tags(self, tmp_path):
        source = tmp_path / "incoming"
        dest = tmp_path / "library"
        _book(source, "MyBook/01 - Chapter.mp3")
        _book(source, "MyBook/02 - Chapter.mp3")
        catalog = [MetadataCandidate(title="MyBook", authors=[Contributor("Some Author")])]
        codec = FakeTagCodec()

        _run(
            Orchestrator(
                _config(tmp_path, write_tags=True), FakeProvider(catalog=catalog), tag_codec=codec
            ),
            source,
            dest,
        )
        assert [path.name for path, _ in codec.written] == ["Part 01.mp3", "Part 02.mp3"]
        assert [tags["track"] for _, tags in codec.written] == ["1/2", "2/2"]
        assert codec.written[0][1]["title"] == "MyBook"


class TestBatchReporting:
    def test_state_transitions(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Dune.m4b")
        events = EventBus()
        states = []
        events.subscribe(BatchEvents.STATE_CHANGED, lambda d: states.append(d["state"]))
        orchestrator = Orchestrator(
            _config(tmp_path), FakeProvider(catalog=[DUNE]), events=events, tag_codec=FakeTagCodec()
        )
        assert orchestrator.state == OrchestratorState.IDLE

        _run(orchestrator, source)
        assert states == ["scanning", "grouping", "processing", "completed"]
        assert orchestrator.state == OrchestratorState.COMPLETED

    def test_progress_and_completion_events(self, tmp_path):
        source = tmp_path / "incoming"
        for name in ("Alpha", "Bravo", "Charlie"):
            _book(source, f"{name}.m4b")
        events = EventBus()
        progress = []
        events.subscribe(BatchEvents.PROGRESS, progress.append)

        _run(
            Orchestrator(_config(tmp_path), FakeProvider(), events=events, tag_codec=FakeTagCodec()),
            source,
        )
        assert sorted(p["completed"] for p in progress) == [1, 2, 3]
        assert all(p["total"] == 3 for p in progress)
        completed = events.last_event(BatchEvents.COMPLETED)
        assert completed["metadata_only"] == 3
        assert completed["total"] == 3
        assert events.last_event(BatchEvents.STARTED)["books"] == 3

    def test_lookup_concurrency_bounded(self, tmp_path):
        source = tmp_path / "incoming"
        names = ["Alpha", "Bravo", "Charlie", "Delta", "Echo"]
        for name in names:
            _book(source, f"{name}.m4b")
        provider = FakeProvider(delay=0.02)

        result = _run(
            Orchestrator(_config(tmp_path, concurrency=2), provider, tag_codec=FakeTagCodec()),
            source,
        )
        assert 1 <= provider.peak <= 2
        assert len(provider.searches) == 5
        # Reported in grouper order regardless of completion order
        assert [b.name for b in result.books] == names

    def test_books_looked_up_in_grouper_order(self, tmp_path):
        source = tmp_path / "incoming"
        for name in ("Alpha", "Bravo", "Charlie"):
            _book(source, f"{name}.m4b")
        journal = []

        class JournalCodec(FakeTagCodec):
            def read(self, path):
                journal.append(f"read {Path(path).stem}")
                return super().read(path)

        class JournalProvider(FakeProvider):
            async def search(self, title=None, author=None, narrator=None):
                journal.append(f"search {title}")
                return await super().search(title, author, narrator)

        _run(
            Orchestrator(
                _config(tmp_path, concurrency=1), JournalProvider(), tag_codec=JournalCodec()
            ),
            source,
        )
        assert journal == [
            "read Alpha",
            "search Alpha",
            "read Bravo",
            "search Bravo",
            "read Charlie",
            "search Charlie",
        ]

    def test_counters_match_books(self, tmp_path):
        source = tmp_path / "incoming"
        _book(source, "Broken.m4b")
        _book(source, "Dune.m4b")
        _book(source, "Unknown Thing.m4b")
        provider = FakeProvider(catalog=[DUNE], fail_titles={"Broken"})

        result = _run(Orchestrator(_config(tmp_path), provider, tag_codec=FakeTagCodec()), source)
        assert result.total == len(result.books) == 3
        statuses = sorted(b.status.value for b in result.books)
        assert statuses == ["failed", "metadata_only", "processed"]
