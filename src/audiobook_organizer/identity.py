"""Infer what a book is from its embedded tags and file/directory names.

Produces an InferredIdentity (title, author, series, asin) for the scorer
and the metadata provider. Embedded tags win over names; names fill the
gaps.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from loguru import logger

from .ffprobe import extract_author_from_tags
from .models import BookGroup, InferredIdentity, SeriesInfo

log = logger.bind(stage="identity")

# Real ASINs are upper-case and carry at least one digit, which keeps
# ten-letter words like "Background" from matching
ASIN_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"\b(B(?=[0-9A-Z]{0,8}\d)[0-9A-Z]{9})\b"),
    re.compile(r"[\[(]\s*(B[0-9A-Z]{9})\s*[\])]"),
    re.compile(r"(?i:ASIN)[:\-]?\s*(B[0-9A-Z]{9})"),
)

# Names that say nothing about the book -- use the directory name instead
_GENERIC_NAMES = frozenset(
    {
        "chapter",
        "track",
        "part",
        "disc",
        "cd",
        "audio",
        "audiobook",
        "book",
        "file",
    }
)

# Only known audio suffixes: stems like "Mr. Mercedes" contain dots
_AUDIO_SUFFIX = re.compile(r"\.(mp3|m4b|m4a|aax|aa|ogg|flac|opus|aac)$", re.IGNORECASE)

_POSITION = r"(\d+(?:\.\d+)?|(?-i:[IVXLC]+))"

# Ordered: the first matching pattern wins
_SERIES_PATTERNS: tuple[tuple[re.Pattern, int, int, int], ...] = (
    # "Title (Series, Book N)" -> title, series, position
    (re.compile(rf"^(.+?)\s*[(\[](.+?),?\s*Book\s*{_POSITION}[)\]]$", re.IGNORECASE), 1, 2, 3),
    # "Series, Book N: Title"
    (re.compile(rf"^(.+?),?\s*Book\s*{_POSITION}[\s:\-]+(.+)$", re.IGNORECASE), 3, 1, 2),
    # "Title - Series Book N"
    (re.compile(rf"^(.+?)\s+[-\u2013]\s+(.+?)\s+Book\s*{_POSITION}$", re.IGNORECASE), 1, 2, 3),
    # "Series Book N - Title"
    (re.compile(rf"^(.+?)\s+Book\s*{_POSITION}[\s\-\u2013]+(.+)$", re.IGNORECASE), 3, 1, 2),
)


def extract_asin_from_filename(filename: str) -> str | None:
    """Find an ASIN (B + 9 alphanumerics) anywhere in a file or directory name."""
    if not filename:
        return None
    for pattern in ASIN_PATTERNS:
        match = pattern.search(filename)
        if match:
            asin = match.group(1).upper()
            log.debug(f"Extracted ASIN {asin} from {filename!r}")
            return asin
    return None


def _basename(filename: str) -> str:
    name = re.split(r"[\\/]", filename)[-1]
    return _AUDIO_SUFFIX.sub("", name).strip()


def extract_title_author_from_filename(filename: str) -> tuple[str, str | None]:
    """Split a name into (title, author).

    Recognized layouts: "Author - Title", "Title by Author",
    "Title (Author)". Anything else is all title.
    """
    base = _basename(filename)
    if not base:
        return "", None

    match = re.match(r"^(.+?)\s+[-\u2013]\s+(.+)$", base)
    if match:
        return match.group(2).strip(), match.group(1).strip()

    match = re.match(r"^(.+?)\s+by\s+(.+)$", base, re.IGNORECASE)
    if match:
        return match.group(1).strip(), match.group(2).strip()

    match = re.match(r"^(.+?)\s*[(\[](.+?)[)\]]$", base)
    if match and not extract_asin_from_filename(match.group(2)):
        return match.group(1).strip(), match.group(2).strip()

    return base, None


def clean_search_term(term: str) -> str:
    """Normalize a raw name into something worth sending to a search endpoint."""
    if not term:
        return ""
    cleaned = _AUDIO_SUFFIX.sub("", term)
    cleaned = re.sub(r"^(audiobook|audio|book)[\s\-_:]+", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(
        r"[\s\-_:]+(audiobook|audio|book|unabridged|abridged)$", "", cleaned, flags=re.IGNORECASE
    )
    cleaned = re.sub(r"^\d+[\s.\-_:]+", "", cleaned)
    cleaned = re.sub(r"[\s\-_:]+", " ", cleaned)
    return cleaned.strip()


def parse_series_info(title: str) -> tuple[str, SeriesInfo | None]:
    """Pull "Series, Book N" style annotations out of a title.

    Returns (clean_title, series) with series None when nothing matched.
    """
    if not title:
        return title, None
    for pattern, title_group, series_group, position_group in _SERIES_PATTERNS:
        match = pattern.match(title)
        if match:
            series = SeriesInfo(
                name=match.group(series_group).strip().rstrip(",:- "),
                position=match.group(position_group).strip(),
            )
            return match.group(title_group).strip(), series
    return title, None


def identity_from_tags(tags: Mapping[str, str]) -> InferredIdentity | None:
    """Build an identity from lower-cased format tags, or None without a title.

    Multi-file books usually carry the book title in `album` and the
    chapter name in `title`, so album is preferred.
    """
    raw_title = (tags.get("album") or tags.get("title") or "").strip()
    if not raw_title:
        return None

    title, series = parse_series_info(raw_title)
    series_name = (tags.get("series") or tags.get("mvnm") or "").strip()
    if series_name:
        position = (tags.get("series-part") or tags.get("mvin") or "").strip() or None
        series = SeriesInfo(name=series_name, position=position)

    asin = (tags.get("asin") or tags.get("audible_asin") or "").strip().upper() or None
    author = extract_author_from_tags(tags) or None
    return InferredIdentity(title=title, author=author, series=series, asin=asin)


def identity_from_name(name: str) -> InferredIdentity:
    """Build an identity from a file stem or directory name."""
    asin = extract_asin_from_filename(name)
    if asin:
        name = re.sub(
            rf"\s*(?:ASIN[:\-]?\s*)?[\[(]?\s*{asin}\s*[\])]?", "", name, flags=re.IGNORECASE
        )
    title, author = extract_title_author_from_filename(name)
    title, series = parse_series_info(title)
    return InferredIdentity(
        title=clean_search_term(title) or title,
        author=author,
        series=series,
        asin=asin,
    )


def _is_generic(name: str) -> bool:
    stripped = re.sub(r"[\d\s_\-.]+", " ", name).strip().lower()
    return not stripped or stripped in _GENERIC_NAMES


def name_for_group(group: BookGroup) -> str:
    """The most descriptive name available for a group.

    Falls back to the directory name when the group's own name is generic
    ("Chapter", "Track 01") and the group is one of several files.
    """
    if group.is_multi_file:
        candidate = group.name
    else:
        candidate = group.primary_file.stem
    if _is_generic(candidate) and group.directory.name:
        return group.directory.name
    return candidate


def infer_identity(group: BookGroup, tags: Mapping[str, str] | None = None) -> InferredIdentity:
    """Combine tag- and name-derived identities, tags taking precedence."""
    name = name_for_group(group)
    from_name = identity_from_name(name)
    from_tags = identity_from_tags(tags) if tags else None

    if from_tags is None:
        identity = from_name
    else:
        identity = InferredIdentity(
            title=from_tags.title,
            author=from_tags.author or from_name.author,
            series=from_tags.series or from_name.series,
            asin=from_tags.asin or from_name.asin,
        )

    if identity.asin is None:
        identity.asin = extract_asin_from_filename(group.primary_file.name) or (
            extract_asin_from_filename(group.directory.name)
        )

    log.debug(
        f"Identity for {group.name!r}: title={identity.title!r} author={identity.author!r} "
        f"asin={identity.asin}"
    )
    return identity
