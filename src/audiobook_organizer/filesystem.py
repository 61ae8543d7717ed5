"""Async filesystem collaborator.

Blocking os/shutil calls run in a worker thread via asyncio.to_thread so the
event loop stays free while the scanner and organizer wait on disk.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

log = logger.bind(stage="filesystem")

FILE = "file"
DIRECTORY = "dir"
SYMLINK = "symlink"
OTHER = "other"


@dataclass(frozen=True)
class DirEntryInfo:
    name: str
    path: Path
    kind: str


def _list_dir(path: Path) -> list[DirEntryInfo]:
    entries = []
    with os.scandir(path) as it:
        for entry in it:
            # Symlink check first: is_dir()/is_file() follow links by default
            if entry.is_symlink():
                kind = SYMLINK
            elif entry.is_dir(follow_symlinks=False):
                kind = DIRECTORY
            elif entry.is_file(follow_symlinks=False):
                kind = FILE
            else:
                kind = OTHER
            entries.append(DirEntryInfo(entry.name, Path(entry.path), kind))
    entries.sort(key=lambda e: e.name)
    return entries


def _cleanup_empty_parents(directory: Path, stop_at: Path | None) -> None:
    """Walk up from directory removing empty dirs until stop_at or a non-empty one."""
    current = directory
    while current != stop_at and current != current.parent:
        try:
            if current.is_dir() and not any(current.iterdir()):
                log.debug(f"Removed empty dir: {current}")
                current.rmdir()
            else:
                break
        except OSError:
            break
        current = current.parent


class LocalFileSystem:
    """Local disk implementation used by the scanner and the organizer."""

    async def list_dir(self, path: Path) -> list[DirEntryInfo]:
        """List a directory's entries sorted by name. Raises OSError."""
        return await asyncio.to_thread(_list_dir, Path(path))

    async def stat(self, path: Path, follow_symlinks: bool = True) -> os.stat_result:
        return await asyncio.to_thread(os.stat, path, follow_symlinks=follow_symlinks)

    async def realpath(self, path: Path) -> Path:
        return Path(await asyncio.to_thread(os.path.realpath, path))

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(os.path.exists, path)

    async def is_dir(self, path: Path) -> bool:
        return await asyncio.to_thread(os.path.isdir, path)

    async def make_dirs(self, path: Path) -> None:
        await asyncio.to_thread(Path(path).mkdir, parents=True, exist_ok=True)
        log.debug(f"Ensured directory: {path}")

    async def copy_file(self, source: Path, dest: Path, overwrite: bool = False) -> Path:
        """Copy source to dest, creating parent directories.

        Raises FileNotFoundError for a missing source and FileExistsError when
        dest exists and overwrite is off.
        """
        source, dest = Path(source), Path(dest)
        await self._check_transfer(source, dest, overwrite)
        await self.make_dirs(dest.parent)
        await asyncio.to_thread(shutil.copy2, source, dest)
        log.debug(f"Copied file: {source} -> {dest}")
        return dest

    async def move_file(
        self,
        source: Path,
        dest: Path,
        overwrite: bool = False,
        stop_at: Path | None = None,
    ) -> Path:
        """Move source to dest and prune directories the move left empty.

        Pruning walks up from the source directory and never passes stop_at.
        """
        source, dest = Path(source), Path(dest)
        await self._check_transfer(source, dest, overwrite)
        if overwrite and await self.exists(dest):
            await asyncio.to_thread(dest.unlink)
        await self.make_dirs(dest.parent)
        await asyncio.to_thread(shutil.move, str(source), str(dest))
        log.debug(f"Moved file: {source} -> {dest}")
        if stop_at is not None:
            await asyncio.to_thread(_cleanup_empty_parents, source.parent, Path(stop_at))
        return dest

    async def delete_file(self, path: Path) -> bool:
        path = Path(path)
        if not await self.exists(path):
            log.warning(f"File does not exist, can't delete: {path}")
            return False
        await asyncio.to_thread(path.unlink)
        log.debug(f"Deleted file: {path}")
        return True

    async def read_bytes(self, path: Path) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)

    async def write_bytes(self, path: Path, data: bytes) -> None:
        path = Path(path)
        await self.make_dirs(path.parent)
        await asyncio.to_thread(path.write_bytes, data)

    async def _check_transfer(self, source: Path, dest: Path, overwrite: bool) -> None:
        if not await self.exists(source):
            raise FileNotFoundError(f"Source file does not exist: {source}")
        if not overwrite and await self.exists(dest):
            raise FileExistsError(f"Destination file already exists: {dest}")
