"""Audio tag codec: read format tags with ffprobe, write them with ffmpeg.

Tag I/O is not retried; a failed read is reported and the book continues
with name-derived identity.
"""

import json
import subprocess
from pathlib import Path
from typing import Protocol

from loguru import logger

from .errors import ExternalToolError
from .models import MetadataCandidate

log = logger.bind(stage="tags")

FFMPEG_TIMEOUT = 120


class TagCodec(Protocol):
    def read(self, path: Path) -> dict[str, str]:
        """Format-level tags with lower-cased keys. Raises ExternalToolError."""
        ...

    def write(self, path: Path, tags: dict[str, str]) -> bool:
        """Write tags in place. Returns False on failure."""
        ...


def get_tags(file: Path) -> dict:
    """Get format-level metadata tags from an audio file.

    Returns dict with lowercase keys. Common keys: artist, album_artist,
    title, album, genre, date, comment. Raises ExternalToolError when
    ffprobe is missing or cannot read the file.
    """
    try:
        result = subprocess.run(
            ["ffprobe", "-v", "error", "-show_entries", "format_tags",
             "-of", "json", str(file)],
            capture_output=True, text=True,
        )
    except FileNotFoundError as e:
        raise ExternalToolError("ffprobe", 127, "ffprobe not found on PATH") from e
    if result.returncode != 0:
        raise ExternalToolError("ffprobe", result.returncode, result.stderr.strip()[-500:])
    try:
        data = json.loads(result.stdout)
        raw = data.get("format", {}).get("tags", {})
        # Normalize keys to lowercase
        return {k.lower(): v for k, v in raw.items()}
    except (json.JSONDecodeError, KeyError, AttributeError):
        return {}


def extract_author_from_tags(tags: dict) -> str:
    """Extract a clean author name from embedded tags.

    Checks album_artist first (more reliable), then artist.
    Strips narrator credits, role annotations, and junk.
    Returns empty string if no usable author found.
    """
    # Prefer album_artist over artist (less likely to have narrator)
    for key in ("album_artist", "artist"):
        raw = tags.get(key, "")
        if not raw:
            continue
        cleaned = _clean_author_tag(raw)
        if cleaned:
            return cleaned
    return ""


# Role/credit indicators that mean the rest isn't the author
_ROLE_WORDS = frozenset({
    "introduction", "narrator", "narrated", "read", "performed",
    "foreword", "afterword", "translated", "edited", "abridged",
    "unabridged", "producer", "director",
})


def _clean_author_tag(raw: str) -> str:
    """Clean an artist/album_artist tag into a usable author name.

    "Unknown"/"Various" become empty; "Author - introduction",
    "Author, Narrated by X" and "Author; Narrator" keep only the author.
    """
    if not raw or not raw.strip():
        return ""

    name = raw.strip()

    if name.lower() in ("unknown", "various", "various artists", "n/a", "none"):
        return ""

    if " - " in name:
        parts = name.split(" - ", 1)
        right_lower = parts[1].strip().lower()
        if any(right_lower.startswith(w) for w in _ROLE_WORDS):
            name = parts[0].strip()

    if ", " in name:
        parts = name.split(", ")
        clean_parts = [parts[0]]
        for part in parts[1:]:
            part_lower = part.strip().lower()
            if any(w in part_lower for w in _ROLE_WORDS):
                break  # Stop at first role credit
            clean_parts.append(part)
        name = ", ".join(clean_parts)

    # Multiple artists -- take first only
    if "; " in name:
        name = name.split("; ", 1)[0].strip()

    if len(name) < 3:
        return ""

    return name


def _build_album(title: str, series: str, position: str) -> str:
    """Album tag from series/position, falling back to the title.

    series="The Expanse", position="3" -> "The Expanse, Book 3"
    """
    if series and position:
        return f"{series}, Book {position}"
    if series:
        return series
    return title


def tags_from_candidate(candidate: MetadataCandidate) -> dict[str, str]:
    """Flatten a candidate into ffmpeg -metadata key/value pairs."""
    series = candidate.series.name if candidate.series else ""
    position = (candidate.series.position or "") if candidate.series else ""
    author = "; ".join(a.name for a in candidate.authors)

    tags: dict[str, str] = {
        "title": candidate.title,
        "album": _build_album(candidate.title, series, position),
        "artist": author,
        "album_artist": author,
        "genre": candidate.genres[0] if candidate.genres else "Audiobook",
        "media_type": "2",
    }
    if candidate.narrators:
        tags["composer"] = "; ".join(n.name for n in candidate.narrators)
    if candidate.year:
        tags["date"] = candidate.year
    if candidate.publisher:
        tags["publisher"] = candidate.publisher
    if candidate.summary:
        tags["comment"] = candidate.summary
    if candidate.copyright:
        tags["copyright"] = candidate.copyright
    if candidate.subtitle:
        tags["subtitle"] = candidate.subtitle
    if candidate.asin:
        tags["asin"] = candidate.asin
    if series:
        tags["series"] = series
        tags["grouping"] = series
        if position:
            tags["series-part"] = position
    return {k: v for k, v in tags.items() if v}


def write_tags(filepath: Path, tags: dict[str, str]) -> bool:
    """Write tags with ffmpeg -c copy, preserving chapters.

    Writes to a temp file beside the original, then atomically replaces
    it. Returns True on success, False on failure.
    """
    filepath = Path(filepath)
    # Keep the real extension last so ffmpeg can pick the muxer
    temp_file = filepath.with_name(f"{filepath.stem}.tagging{filepath.suffix}")

    cmd = ["ffmpeg", "-y", "-i", str(filepath), "-map", "0", "-c", "copy", "-map_chapters", "0"]
    for key, value in tags.items():
        cmd.extend(["-metadata", f"{key}={value}"])
    cmd.append(str(temp_file))

    log.debug(f"ffmpeg command: {' '.join(cmd)}")

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=FFMPEG_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        log.error(f"ffmpeg timed out tagging {filepath.name}")
        temp_file.unlink(missing_ok=True)
        return False
    except FileNotFoundError:
        log.error("ffmpeg not found on PATH; cannot write tags")
        return False

    if result.returncode != 0:
        log.error(f"ffmpeg failed tagging {filepath.name}: {result.stderr[-500:]}")
        temp_file.unlink(missing_ok=True)
        return False

    try:
        temp_file.replace(filepath)
    except OSError as e:
        log.error(f"Failed to replace {filepath.name}: {e}")
        temp_file.unlink(missing_ok=True)
        return False

    return True


class FfprobeTagCodec:
    """TagCodec backed by the ffprobe/ffmpeg binaries."""

    def read(self, path: Path) -> dict[str, str]:
        return get_tags(path)

    def write(self, path: Path, tags: dict[str, str]) -> bool:
        return write_tags(path, tags)
