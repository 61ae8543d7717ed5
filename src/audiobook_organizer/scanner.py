"""Recursive discovery of audiobook files under a root directory."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from .errors import ConfigError, ScanError, SubdirectoryReadError
from .events import EventBus, FileEvents
from .filesystem import DIRECTORY, FILE, SYMLINK, LocalFileSystem
from .models import AUDIO_EXTENSIONS, FileEntry

if TYPE_CHECKING:
    from .config import OrganizerConfig

log = logger.bind(stage="scan")

PROGRESS_INTERVAL = 100

ExcludePattern = str | re.Pattern


@dataclass
class ScanOptions:
    """Traversal and qualification settings for one scan.

    max_depth counts the root as depth 1 and is always a hard ceiling.
    Exclude patterns are plain strings (substring of the path) or compiled
    regexes (searched in the path).
    """

    max_depth: int = 10
    follow_symlinks: bool = True
    include_hidden: bool = False
    min_size: int = 1024 * 1024
    max_size: int = 5 * 1024 * 1024 * 1024
    extensions: frozenset[str] = AUDIO_EXTENSIONS
    exclude_patterns: Sequence[ExcludePattern] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be a positive integer, got {self.max_depth}")
        if self.min_size > self.max_size:
            raise ValueError(
                f"min_size ({self.min_size}) is larger than max_size ({self.max_size})"
            )

    @classmethod
    def from_config(cls, config: OrganizerConfig) -> ScanOptions:
        try:
            return cls(
                max_depth=config.max_scan_depth,
                follow_symlinks=config.follow_symlinks,
                include_hidden=config.include_hidden,
                min_size=config.min_file_size,
                max_size=config.max_file_size,
                exclude_patterns=list(config.exclude_patterns),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid scan settings: {e}") from e

    def is_excluded(self, path: Path) -> bool:
        text = str(path)
        for pattern in self.exclude_patterns:
            if isinstance(pattern, re.Pattern):
                if pattern.search(text):
                    return True
            elif pattern in text:
                return True
        return False

    def qualifies(self, entry: FileEntry) -> bool:
        if entry.extension not in self.extensions:
            return False
        if not (self.min_size <= entry.size <= self.max_size):
            return False
        return not self.is_excluded(entry.path)


@dataclass
class _ScanState:
    root: Path
    options: ScanOptions
    visited: set[Path] = field(default_factory=set)
    examined: int = 0
    found: list[FileEntry] = field(default_factory=list)


class DirectoryScanner:
    """Walks a directory tree and returns qualifying audio files.

    Reports start, progress (every 100 examined files) and completion
    through the injected EventBus.
    """

    def __init__(self, events: EventBus, fs: LocalFileSystem | None = None) -> None:
        self.events = events
        self.fs = fs or LocalFileSystem()

    async def scan(self, root: Path, options: ScanOptions | None = None) -> list[FileEntry]:
        """Scan root and return qualifying files in traversal order.

        Raises ScanError when the root itself cannot be read.
        """
        root = Path(root)
        options = options or ScanOptions()
        self.events.emit(FileEvents.SCAN_STARTED, {"root": root, "max_depth": options.max_depth})
        log.info(f"Starting scan: {root} (max_depth={options.max_depth})")

        try:
            await self._check_root(root)
            state = _ScanState(root=root, options=options)
            state.visited.add(await self.fs.realpath(root))
            entries = await self.fs.list_dir(root)
        except ScanError as e:
            self._fail(root, e)
            raise
        except OSError as e:
            error = ScanError(f"Cannot read directory {root}: {e.strerror or e}", str(root))
            self._fail(root, error)
            raise error from e

        await self._process_entries(root, entries, 1, state)

        log.info(f"Scan completed: {len(state.found)} file(s) found, {state.examined} examined")
        self.events.emit(
            FileEvents.SCAN_COMPLETED,
            {"root": root, "file_count": len(state.found), "total_files": state.examined},
        )
        return state.found

    # -- traversal --

    async def _check_root(self, root: Path) -> None:
        if not await self.fs.exists(root):
            raise ScanError(f"Directory does not exist: {root}", str(root))
        if not await self.fs.is_dir(root):
            raise ScanError(f"Path is not a directory: {root}", str(root))

    async def _walk(self, directory: Path, depth: int, state: _ScanState) -> None:
        if depth > state.options.max_depth:
            log.debug(f"Max depth reached at: {directory}")
            return
        try:
            entries = await self._list_subdirectory(directory)
        except SubdirectoryReadError as e:
            log.warning(f"{e}; skipping subtree")
            return
        await self._process_entries(directory, entries, depth, state)

    async def _list_subdirectory(self, directory: Path):
        try:
            return await self.fs.list_dir(directory)
        except OSError as e:
            raise SubdirectoryReadError(
                f"Cannot read subdirectory {directory}: {e.strerror or e}", str(directory)
            ) from e

    async def _process_entries(self, directory, entries, depth: int, state: _ScanState) -> None:
        options = state.options
        for entry in entries:
            if not options.include_hidden and entry.name.startswith("."):
                continue

            if entry.kind == DIRECTORY:
                real = await self.fs.realpath(entry.path)
                if real in state.visited:
                    continue
                state.visited.add(real)
                await self._walk(entry.path, depth + 1, state)
            elif entry.kind == FILE:
                await self._examine_file(entry.path, state)
            elif entry.kind == SYMLINK and options.follow_symlinks:
                await self._follow_symlink(entry.path, depth, state)

    async def _follow_symlink(self, link: Path, depth: int, state: _ScanState) -> None:
        try:
            st = await self.fs.stat(link)
            real = await self.fs.realpath(link)
        except OSError as e:
            log.warning(f"Skipping broken symlink {link}: {e.strerror or e}")
            return

        if await self.fs.is_dir(link):
            if real in state.visited:
                log.warning(f"Skipping symlink cycle: {link} -> {real}")
                return
            state.visited.add(real)
            await self._walk(link, depth + 1, state)
        else:
            self._count_examined(state)
            # Keep the link path; size and times come from the target
            entry = FileEntry.from_stat(link, st)
            if state.options.qualifies(entry):
                state.found.append(entry)

    async def _examine_file(self, path: Path, state: _ScanState) -> None:
        self._count_examined(state)
        if path.suffix.lower() not in state.options.extensions:
            return
        try:
            st = await self.fs.stat(path)
        except OSError as e:
            log.warning(f"Cannot stat {path}: {e.strerror or e}")
            return
        entry = FileEntry.from_stat(path, st)
        if state.options.qualifies(entry):
            state.found.append(entry)

    def _count_examined(self, state: _ScanState) -> None:
        state.examined += 1
        if state.examined % PROGRESS_INTERVAL == 0:
            self.events.emit(
                FileEvents.SCAN_PROGRESS,
                {"root": state.root, "processed": state.examined, "found": len(state.found)},
            )

    def _fail(self, root: Path, error: ScanError) -> None:
        log.error(f"Scan failed: {error}")
        self.events.emit(FileEvents.SCAN_FAILED, {"root": root, "error": str(error)})
