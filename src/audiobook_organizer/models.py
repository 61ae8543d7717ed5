"""Core enums, constants, and record types for the audiobook organizer.

Enums:
    BookStatus        -- Terminal outcome of one book (processed, metadata_only,
                         skipped, failed).
    BookPhase         -- Per-book progress (looking_up, scoring, organizing) plus
                         the terminal BookStatus values.
    OrchestratorState -- Batch state machine (idle through completed/failed).
    ErrorCategory     -- Error classification for retry logic (transient, permanent).

Records:
    FileEntry, BookGroup, SeriesInfo, Contributor, InferredIdentity,
    MetadataCandidate, MatchResult, BookResult, BatchResult.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path


class BookStatus(StrEnum):
    PROCESSED = "processed"
    METADATA_ONLY = "metadata_only"
    SKIPPED = "skipped"
    FAILED = "failed"


class BookPhase(StrEnum):
    LOOKING_UP = "looking_up"
    SCORING = "scoring"
    ORGANIZING = "organizing"
    PROCESSED = "processed"
    METADATA_ONLY = "metadata_only"
    SKIPPED = "skipped"
    FAILED = "failed"


class OrchestratorState(StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    GROUPING = "grouping"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorCategory(StrEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mp3",
        ".m4a",
        ".m4b",
        ".aac",
        ".ogg",
        ".flac",
        ".opus",
    }
)


# ---------------------------------------------------------------------------
# Filesystem records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileEntry:
    """Immutable snapshot of one audio file found by the scanner."""

    path: Path
    name: str
    directory: Path
    extension: str
    size: int
    created: datetime
    modified: datetime

    @classmethod
    def from_stat(cls, path: Path, st: os.stat_result) -> FileEntry:
        # st_birthtime only exists on macOS/BSD; ctime is the closest elsewhere
        created = getattr(st, "st_birthtime", st.st_ctime)
        return cls(
            path=path,
            name=path.name,
            directory=path.parent,
            extension=path.suffix.lower(),
            size=st.st_size,
            created=datetime.fromtimestamp(created),
            modified=datetime.fromtimestamp(st.st_mtime),
        )

    @property
    def stem(self) -> str:
        return self.name[: -len(self.extension)] if self.extension else self.name


@dataclass
class BookGroup:
    """One or more files believed to make up a single audiobook."""

    key: str
    name: str
    directory: Path
    files: list[FileEntry] = field(default_factory=list)
    total_size: int = 0

    def add(self, entry: FileEntry) -> None:
        self.files.append(entry)
        self.total_size += entry.size

    @property
    def is_multi_file(self) -> bool:
        return len(self.files) > 1

    @property
    def primary_file(self) -> FileEntry:
        return self.files[0]


# ---------------------------------------------------------------------------
# Metadata records
# ---------------------------------------------------------------------------


@dataclass
class SeriesInfo:
    name: str
    position: str | None = None


@dataclass
class Contributor:
    name: str
    asin: str = ""


@dataclass
class InferredIdentity:
    """What we believe a book is, derived from its filename or embedded tags."""

    title: str
    author: str | None = None
    series: SeriesInfo | None = None
    asin: str | None = None


@dataclass
class MetadataCandidate:
    """A metadata record returned by the provider, not yet confirmed.

    Populated by the provider adapter; nothing past that boundary sees the
    raw payload.
    """

    title: str
    asin: str = ""
    subtitle: str = ""
    authors: list[Contributor] = field(default_factory=list)
    narrators: list[Contributor] = field(default_factory=list)
    series: SeriesInfo | None = None
    publisher: str = ""
    release_date: str = ""
    language: str = ""
    genres: list[str] = field(default_factory=list)
    summary: str = ""
    copyright: str = ""
    cover_url: str = ""
    runtime_minutes: int | None = None
    is_abridged: bool = False

    @property
    def primary_author(self) -> str:
        return self.authors[0].name if self.authors else ""

    @property
    def primary_narrator(self) -> str:
        return self.narrators[0].name if self.narrators else ""

    @property
    def year(self) -> str:
        return self.release_date[:4] if self.release_date else ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MatchResult:
    candidate: MetadataCandidate
    score: float


# ---------------------------------------------------------------------------
# Batch results
# ---------------------------------------------------------------------------


@dataclass
class BookResult:
    name: str
    files: int
    status: BookStatus
    metadata: dict | None = None
    error: str | None = None
    score: float | None = None
    targets: list[Path] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "files": self.files,
            "status": self.status.value,
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        if self.error is not None:
            data["error"] = self.error
        if self.score is not None:
            data["score"] = round(self.score, 3)
        if self.targets:
            data["targets"] = [str(t) for t in self.targets]
        return data


@dataclass
class BatchResult:
    """Result summary from one directory run."""

    processed: int = 0
    failed: int = 0
    skipped: int = 0
    metadata_only: int = 0
    books: list[BookResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.failed + self.skipped + self.metadata_only

    def record(self, result: BookResult) -> None:
        """Count a completed book. Call exactly once per book."""
        if result.status == BookStatus.PROCESSED:
            self.processed += 1
        elif result.status == BookStatus.FAILED:
            self.failed += 1
        elif result.status == BookStatus.SKIPPED:
            self.skipped += 1
        else:
            self.metadata_only += 1

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "metadata_only": self.metadata_only,
            "total": self.total,
            "books": [b.to_dict() for b in self.books],
        }
