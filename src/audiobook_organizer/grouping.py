"""Group scanned files into logical books.

Files in the same directory whose names differ only by a track, chapter,
part or disc marker land in the same BookGroup. The marker stripping is an
ordered pipeline of named rules so each step can be tested on its own.

Known limitation: a title that legitimately contains "Part 2" or
"Chapter 1" is stripped the same way as a marker.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from loguru import logger

from .models import BookGroup, FileEntry

log = logger.bind(stage="grouping")

MIN_KEY_LENGTH = 3


@dataclass(frozen=True)
class StripRule:
    name: str
    pattern: re.Pattern

    def apply(self, text: str) -> str:
        return self.pattern.sub("", text)


STRIP_RULES: tuple[StripRule, ...] = (
    StripRule("leading_number", re.compile(r"^\d+[_\-\s]+")),
    StripRule("track_token", re.compile(r"track[_\-\s]*\d+[_\-\s]*", re.IGNORECASE)),
    StripRule("chapter_token", re.compile(r"chapter[_\-\s]*\d+[_\-\s]*", re.IGNORECASE)),
    StripRule("part_suffix", re.compile(r"[_\-\s]+part[_\-\s]*\d+$", re.IGNORECASE)),
    StripRule("disc_suffix", re.compile(r"[_\-\s]+disc[_\-\s]*\d+$", re.IGNORECASE)),
)

# Tried in order; the first match wins
TRACK_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"track[_\-\s]*(\d+)", re.IGNORECASE),
    re.compile(r"chapter[_\-\s]*(\d+)", re.IGNORECASE),
    re.compile(r"^(\d+)[_\-\s]+"),
    re.compile(r"\s(\d+)\s*\.[^.]+$"),
    re.compile(r"part[_\-\s]*(\d+)", re.IGNORECASE),
    re.compile(r"disc[_\-\s]*(\d+)", re.IGNORECASE),
)


def strip_markers(base_name: str, rules: Iterable[StripRule] = STRIP_RULES) -> str:
    """Run base_name through the strip pipeline.

    Falls back to base_name when the result is shorter than 3 characters.
    """
    cleaned = base_name
    for rule in rules:
        cleaned = rule.apply(cleaned)
    cleaned = cleaned.strip()
    if len(cleaned) < MIN_KEY_LENGTH:
        return base_name
    return cleaned


def book_key(entry: FileEntry, rules: Iterable[StripRule] = STRIP_RULES) -> str:
    """Grouping key: parent directory name plus the marker-free base name."""
    return f"{entry.directory.name}_{strip_markers(entry.stem, rules)}".lower()


def book_display_name(entry: FileEntry, rules: Iterable[StripRule] = STRIP_RULES) -> str:
    """Human-readable book name derived from one file's name."""
    name = strip_markers(entry.stem, rules)
    name = re.sub(r"[_-]+", " ", name).strip()
    return name or entry.stem


def extract_track_number(filename: str) -> int:
    """Ordering number from a filename; 0 when no marker is found."""
    for pattern in TRACK_PATTERNS:
        match = pattern.search(filename)
        if match:
            return int(match.group(1))
    return 0


def group_files(
    files: Iterable[FileEntry],
    rules: tuple[StripRule, ...] = STRIP_RULES,
) -> list[BookGroup]:
    """Partition files into books.

    Groups are returned in order of first appearance after sorting by name;
    files within a group are ordered by track number, then name.
    """
    ordered = sorted(files, key=lambda f: f.name)
    groups: dict[str, BookGroup] = {}

    for entry in ordered:
        key = book_key(entry, rules)
        group = groups.get(key)
        if group is None:
            group = BookGroup(
                key=key,
                name=book_display_name(entry, rules),
                directory=entry.directory,
            )
            groups[key] = group
        group.add(entry)

    for group in groups.values():
        group.files.sort(key=lambda f: (extract_track_number(f.name), f.name))

    result = list(groups.values())
    log.debug(f"Grouped {len(ordered)} file(s) into {len(result)} book(s)")
    return result


class BookGrouper:
    """Object wrapper around group_files with a configurable rule pipeline."""

    def __init__(self, rules: tuple[StripRule, ...] = STRIP_RULES) -> None:
        self.rules = rules

    def group(self, files: Iterable[FileEntry]) -> list[BookGroup]:
        return group_files(files, self.rules)
