"""Build destination paths from metadata templates and place files there.

Templates are plain strings with %placeholder% tokens:

    series       %author%/%series%/%series_position%. %title%
    no_series    %author%/%title%
    single_file  %author%/%title%
    multi_file   %author%/%title%/Part %part_number%

Selection: explicit template > multi-file > candidate has a series >
no_series. The source extension is appended and the result is sanitized.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from pathlib import Path

from loguru import logger

from ..config import DEFAULT_TEMPLATES
from ..errors import OrganizeError
from ..events import EventBus, FileEvents
from ..filesystem import LocalFileSystem
from ..models import MetadataCandidate
from ..sanitize import MAX_PATH_LENGTH, sanitize_filename, sanitize_path

log = logger.bind(stage="organize-ops")

_PLACEHOLDER = re.compile(r"%(\w+)%")


def _pad_number(value: str | int | None) -> str:
    """Zero-pad integral values to two digits; leave anything else as-is."""
    if value is None:
        return ""
    text = str(value).strip()
    if text.isdecimal():
        return f"{int(text):02d}"
    return text


def _segment(value: str | None, fallback: str = "") -> str:
    """One path-safe value; path separators in metadata must not nest dirs."""
    cleaned = sanitize_filename(value.strip()) if value else ""
    return cleaned or fallback


class PathTemplateEngine:
    """Turns a MetadataCandidate into a destination file path."""

    def __init__(
        self,
        templates: Mapping[str, str] | None = None,
        max_length: int = MAX_PATH_LENGTH,
    ) -> None:
        self.templates = dict(DEFAULT_TEMPLATES)
        if templates:
            self.templates.update(templates)
        self.max_length = max_length

    def select_template(
        self,
        candidate: MetadataCandidate,
        template: str | None = None,
        is_multi_file: bool = False,
    ) -> str:
        if template:
            # A known name picks a configured template; anything else is raw
            return self.templates.get(template, template)
        if is_multi_file:
            return self.templates["multi_file"]
        if candidate.series and candidate.series.name:
            return self.templates["series"]
        return self.templates["no_series"]

    def replacements(
        self,
        candidate: MetadataCandidate,
        part_number: int | str | None = None,
    ) -> dict[str, str]:
        series = candidate.series
        return {
            "title": _segment(candidate.title, "Unknown Title"),
            "subtitle": _segment(candidate.subtitle),
            "author": _segment(candidate.primary_author, "Unknown Author"),
            "narrator": _segment(candidate.primary_narrator, "Unknown Narrator"),
            "year": candidate.year,
            "genre": _segment(candidate.genres[0] if candidate.genres else "", "Unknown Genre"),
            "publisher": _segment(candidate.publisher, "Unknown Publisher"),
            "asin": _segment(candidate.asin),
            "series": _segment(series.name if series else "", "No Series"),
            "series_position": _segment(_pad_number(series.position if series else None)),
            "part_number": _pad_number(part_number),
        }

    def render(self, template: str, values: Mapping[str, str]) -> str:
        """Substitute placeholders and tidy the separators they leave behind."""
        result = _PLACEHOLDER.sub(
            lambda m: values.get(m.group(1).lower(), m.group(0)), template
        )
        result = re.sub(r"/{2,}", "/", result)
        # An empty series position leaves ". Title" at the start of a segment
        result = re.sub(r"(^|/)\.\s+", r"\1", result)
        result = re.sub(r"\s+\.", ".", result)
        return result.rstrip()

    def generate_target_path(
        self,
        candidate: MetadataCandidate | None,
        source_file: Path | str,
        base_dest_dir: Path | str | None,
        *,
        template: str | None = None,
        is_multi_file: bool = False,
        part_number: int | str | None = None,
    ) -> Path:
        if candidate is None:
            raise OrganizeError("Metadata is required to generate a target path")
        if not base_dest_dir or not str(base_dest_dir).strip():
            raise OrganizeError("Base destination directory is required")

        chosen = self.select_template(candidate, template, is_multi_file)
        relative = self.render(chosen, self.replacements(candidate, part_number))

        extension = Path(source_file).suffix
        if extension and not relative.endswith(extension):
            relative += extension

        base = Path(base_dest_dir)
        target = sanitize_path(
            base / relative.lstrip("/"), max_length=self.max_length, root=base
        )
        log.debug(f"Target path for {Path(source_file).name}: {target}")
        return target


class FileOrganizer:
    """Copies or moves a book's files to their template-derived paths."""

    def __init__(
        self,
        engine: PathTemplateEngine | None = None,
        fs: LocalFileSystem | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.engine = engine or PathTemplateEngine()
        self.fs = fs or LocalFileSystem()
        self.events = events

    def plan_targets(
        self,
        book_files: Sequence[Path],
        candidate: MetadataCandidate,
        dest: Path,
        template: str | None = None,
    ) -> list[Path]:
        """Destination for each file, in order. Several files become numbered parts."""
        if not book_files:
            raise OrganizeError("A book needs at least one file to organize")
        if len(book_files) == 1:
            return [
                self.engine.generate_target_path(
                    candidate, book_files[0], dest, template=template
                )
            ]
        return [
            self.engine.generate_target_path(
                candidate,
                source,
                dest,
                template=template,
                is_multi_file=True,
                part_number=index,
            )
            for index, source in enumerate(book_files, start=1)
        ]

    async def is_in_place(self, source: Path, target: Path) -> bool:
        """True when target already exists with the same size as source."""
        if not await self.fs.exists(target):
            return False
        try:
            source_size = (await self.fs.stat(source)).st_size
            target_size = (await self.fs.stat(target)).st_size
        except OSError:
            return False
        return source_size == target_size

    async def place(
        self,
        source: Path,
        target: Path,
        *,
        move: bool = False,
        overwrite: bool = False,
        dry_run: bool = False,
        prune_root: Path | None = None,
    ) -> Path:
        """Copy or move source to an already computed target path."""
        source, target = Path(source), Path(target)
        action = "move" if move else "copy"

        if dry_run:
            log.info(f"[dry-run] Would {action} {source} -> {target}")
            return target

        if await self.is_in_place(source, target):
            log.debug(f"Skip {action} (same size): {target.name}")
            return target

        if await self.fs.exists(target) and not overwrite:
            raise OrganizeError(f"Destination file already exists: {target}")

        try:
            if move:
                await self.fs.move_file(source, target, overwrite=overwrite, stop_at=prune_root)
            else:
                await self.fs.copy_file(source, target, overwrite=overwrite)
        except OSError as e:
            raise OrganizeError(f"Failed to {action} {source} -> {target}: {e}") from e

        log.info(f"{action.capitalize()} {source} -> {target}")
        if self.events is not None:
            self.events.emit(
                FileEvents.ORGANIZED,
                {"source": source, "target": target, "action": action},
            )
        return target

    async def organize_file(
        self,
        source: Path,
        candidate: MetadataCandidate,
        dest: Path,
        *,
        move: bool = False,
        overwrite: bool = False,
        dry_run: bool = False,
        template: str | None = None,
        is_multi_file: bool = False,
        part_number: int | str | None = None,
    ) -> Path:
        target = self.engine.generate_target_path(
            candidate,
            source,
            dest,
            template=template,
            is_multi_file=is_multi_file,
            part_number=part_number,
        )
        return await self.place(
            source, target, move=move, overwrite=overwrite, dry_run=dry_run
        )

    async def organize_multiple_files(
        self,
        sources: Sequence[Path],
        candidate: MetadataCandidate,
        dest: Path,
        *,
        move: bool = False,
        overwrite: bool = False,
        dry_run: bool = False,
        template: str | None = None,
    ) -> list[Path]:
        """Organize files of one book as Part 01..Part NN, in the order given."""
        if not sources:
            raise OrganizeError("Source file list is required and cannot be empty")
        organized = []
        for part_number, source in enumerate(sources, start=1):
            organized.append(
                await self.organize_file(
                    source,
                    candidate,
                    dest,
                    move=move,
                    overwrite=overwrite,
                    dry_run=dry_run,
                    template=template,
                    is_multi_file=True,
                    part_number=part_number,
                )
            )
        return organized
