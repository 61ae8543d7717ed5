"""Batch orchestration: scan, group, identify, score, organize.

State machine: idle -> scanning -> grouping -> processing -> completed,
or failed when the scan root cannot be read. Each book moves through
looking_up -> scoring -> organizing and ends processed, metadata_only,
skipped or failed. One book failing never aborts the batch.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from pathlib import Path

from loguru import logger

from .api import MetadataProvider
from .concurrency import TaskQueue
from .config import OrganizerConfig
from .errors import ExternalToolError, ProviderNotFound
from .events import BatchEvents, EventBus, FileEvents
from .ffprobe import FfprobeTagCodec, TagCodec, tags_from_candidate
from .filesystem import LocalFileSystem
from .grouping import BookGrouper
from .identity import infer_identity
from .metadata import MetadataResolver
from .models import (
    BatchResult,
    BookGroup,
    BookPhase,
    BookResult,
    BookStatus,
    InferredIdentity,
    MatchResult,
    MetadataCandidate,
    OrchestratorState,
)
from .ops.organize import FileOrganizer, PathTemplateEngine
from .scanner import DirectoryScanner, ScanOptions
from .scoring import calculate_match_score, rank_metadata_results, select_best

log = logger.bind(stage="orchestrator")


class Orchestrator:
    """Runs one directory through the whole identification pipeline."""

    def __init__(
        self,
        config: OrganizerConfig,
        provider: MetadataProvider,
        events: EventBus | None = None,
        tag_codec: TagCodec | None = None,
        fs: LocalFileSystem | None = None,
        grouper: BookGrouper | None = None,
    ) -> None:
        self.config = config
        self.events = events or EventBus()
        self.fs = fs or LocalFileSystem()
        self.tag_codec = tag_codec or FfprobeTagCodec()
        self.grouper = grouper or BookGrouper()
        self.scanner = DirectoryScanner(self.events, self.fs)
        self.resolver = MetadataResolver(
            provider,
            self.events,
            region=config.audnexus_region,
            max_retries=config.max_retries,
            initial_delay=config.retry_initial_delay,
            max_delay=config.retry_max_delay,
        )
        self.organizer = FileOrganizer(
            PathTemplateEngine(config.templates), self.fs, self.events
        )
        self.lookup_queue = TaskQueue(config.concurrency)
        self.file_queue = TaskQueue(config.file_concurrency)
        self.state = OrchestratorState.IDLE

    def _set_state(self, state: OrchestratorState) -> None:
        previous, self.state = self.state, state
        log.info(f"State: {previous} -> {state}")
        self.events.emit(
            BatchEvents.STATE_CHANGED, {"state": state.value, "previous": previous.value}
        )

    def _set_phase(self, book: BookGroup, phase: BookPhase) -> None:
        log.debug(f"{book.name}: {phase}")
        self.events.emit(FileEvents.PROCESSING_PHASE, {"name": book.name, "phase": phase.value})

    async def process_directory(self, root: Path, dest_dir: Path | None = None) -> BatchResult:
        """Process every book under root, organizing into dest_dir when given.

        Raises ScanError when root cannot be read and ConfigError for invalid
        scan settings; nothing else escapes.
        """
        root = Path(root)
        dest = Path(dest_dir) if dest_dir else None

        try:
            self._set_state(OrchestratorState.SCANNING)
            files = await self.scanner.scan(root, ScanOptions.from_config(self.config))
            self._set_state(OrchestratorState.GROUPING)
            books = self.grouper.group(files)
        except Exception as e:
            log.error(f"Batch failed before processing: {e}")
            self._set_state(OrchestratorState.FAILED)
            self.events.emit(BatchEvents.FAILED, {"root": root, "error": str(e)})
            raise

        self._set_state(OrchestratorState.PROCESSING)
        log.info(
            f"Processing {len(books)} book(s) from {len(files)} file(s) "
            f"(concurrency={self.config.concurrency}, dest={dest})"
        )
        self.events.emit(
            BatchEvents.STARTED, {"root": root, "books": len(books), "files": len(files)}
        )

        result = BatchResult()

        async def run(book: BookGroup) -> BookResult:
            book_result = await self._process_book_safe(book, dest, root)
            result.record(book_result)
            self.events.emit(
                BatchEvents.PROGRESS,
                {
                    "completed": result.total,
                    "total": len(books),
                    "name": book.name,
                    "status": book_result.status.value,
                },
            )
            return book_result

        # gather keeps grouper order regardless of completion order
        result.books = list(await asyncio.gather(*(run(book) for book in books)))

        self._set_state(OrchestratorState.COMPLETED)
        summary = {k: v for k, v in result.to_dict().items() if k != "books"}
        log.info(
            f"Batch complete: {result.processed} processed, {result.metadata_only} metadata-only, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        self.events.emit(BatchEvents.COMPLETED, {"root": root, **summary})
        return result

    async def _process_book_safe(
        self, book: BookGroup, dest: Path | None, root: Path
    ) -> BookResult:
        try:
            book_result = await self._process_book(book, dest, root)
        except Exception as e:
            log.error(f"Error processing {book.name}: {e}")
            self._set_phase(book, BookPhase.FAILED)
            self.events.emit(
                FileEvents.PROCESSING_FAILED, {"name": book.name, "error": str(e)}
            )
            return BookResult(
                name=book.name,
                files=len(book.files),
                status=BookStatus.FAILED,
                error=str(e),
            )

        self._set_phase(book, BookPhase(book_result.status.value))
        self.events.emit(FileEvents.PROCESSING_COMPLETED, book_result.to_dict())
        return book_result

    async def _process_book(
        self, book: BookGroup, dest: Path | None, root: Path
    ) -> BookResult:
        self.events.emit(
            FileEvents.PROCESSING_STARTED, {"name": book.name, "files": len(book.files)}
        )
        self._set_phase(book, BookPhase.LOOKING_UP)

        # Tag read holds the lookup slot; books enter lookup in grouper order
        identity, match = await self.lookup_queue.add(lambda: self._look_up(book))
        if match is None:
            log.info(f"{book.name}: no confident match, keeping filename metadata")
            return BookResult(
                name=book.name,
                files=len(book.files),
                status=BookStatus.METADATA_ONLY,
                metadata=asdict(identity),
            )

        candidate = match.candidate
        book_result = BookResult(
            name=book.name,
            files=len(book.files),
            status=BookStatus.PROCESSED,
            metadata=candidate.to_dict(),
            score=match.score,
        )
        if dest is None:
            return book_result

        self._set_phase(book, BookPhase.ORGANIZING)
        sources = [f.path for f in book.files]
        targets = self.organizer.plan_targets(sources, candidate, dest)
        book_result.targets = targets

        if not self.config.overwrite_existing and await self._all_in_place(sources, targets):
            log.info(f"{book.name}: already organized, skipping")
            book_result.status = BookStatus.SKIPPED
            return book_result

        await self.file_queue.add(lambda: self._place_all(sources, targets, root))

        if self.config.write_tags and not self.config.dry_run:
            await self._write_tags(candidate, targets)
        return book_result

    async def _read_tags(self, book: BookGroup) -> dict[str, str]:
        path = book.primary_file.path
        try:
            return await asyncio.to_thread(self.tag_codec.read, path)
        except (ExternalToolError, OSError) as e:
            log.warning(f"Could not read tags from {path.name}: {e}")
            return {}

    async def _look_up(
        self, book: BookGroup
    ) -> tuple[InferredIdentity, MatchResult | None]:
        tags = await self._read_tags(book)
        identity = infer_identity(book, tags)
        return identity, await self._identify(book, identity)

    async def _identify(
        self, book: BookGroup, identity: InferredIdentity
    ) -> MatchResult | None:
        """Find the candidate for a book: ASIN lookup first, then search + scoring."""
        if identity.asin:
            try:
                candidate = await self.resolver.lookup_by_asin(identity.asin)
            except ProviderNotFound:
                log.info(f"{book.name}: ASIN {identity.asin} not found, falling back to search")
            else:
                # An identifier hit is accepted regardless of its text score
                return MatchResult(candidate, calculate_match_score(identity, candidate))

        if not (identity.title or identity.author):
            return None

        try:
            candidates = await self.resolver.search(
                title=identity.title or None, author=identity.author or None
            )
        except ProviderNotFound:
            candidates = []

        self._set_phase(book, BookPhase.SCORING)
        ranked = rank_metadata_results(identity, candidates)
        best = select_best(ranked, self.config.match_threshold)
        if best is not None and best.score < self.config.auto_confirm_threshold:
            log.info(
                f"{book.name}: accepted {best.candidate.title!r} at {best.score:.2f} "
                f"(below auto-confirm {self.config.auto_confirm_threshold})"
            )
        return best

    async def _all_in_place(self, sources: list[Path], targets: list[Path]) -> bool:
        for source, target in zip(sources, targets):
            if not await self.organizer.is_in_place(source, target):
                return False
        return True

    async def _place_all(self, sources: list[Path], targets: list[Path], root: Path) -> None:
        for source, target in zip(sources, targets):
            await self.organizer.place(
                source,
                target,
                move=self.config.move_files,
                overwrite=self.config.overwrite_existing,
                dry_run=self.config.dry_run,
                prune_root=root,
            )

    async def _write_tags(self, candidate: MetadataCandidate, targets: list[Path]) -> None:
        tags = tags_from_candidate(candidate)
        for index, target in enumerate(targets, start=1):
            file_tags = dict(tags)
            if len(targets) > 1:
                file_tags["track"] = f"{index}/{len(targets)}"
            ok = await asyncio.to_thread(self.tag_codec.write, target, file_tags)
            if not ok:
                log.warning(f"Tag write failed for {target.name}")
