"""Filename and destination path sanitization."""

import re
from pathlib import Path, PurePath

from loguru import logger

from .errors import OrganizeError

log = logger.bind(stage="sanitize")

MAX_PATH_LENGTH = 240

# Characters rejected by at least one common filesystem (NTFS, exFAT, SMB)
_UNSAFE_PATH_CHARS = re.compile(r'[<>:"|?*\\]')


def sanitize_filename(filename: str) -> str:
    """Sanitize a filename component (not a full path).

    Replaces unsafe chars with underscores, removes leading dots,
    collapses repeated underscores, truncates to 255 bytes preserving extension.
    """
    log.debug(f"sanitize_filename(filename='{filename}')")

    # Replace unsafe characters
    sanitized = re.sub(r'[/\\:"*?<>|;]+', '_', filename)
    # Remove leading dots/underscores
    sanitized = re.sub(r'^[._]+', '', sanitized)
    # Remove trailing dots/underscores
    sanitized = re.sub(r'[._]+$', '', sanitized)
    # Collapse repeated underscores
    sanitized = re.sub(r'__+', '_', sanitized)

    # Truncate to 255 bytes preserving extension
    original_len = len(sanitized.encode('utf-8'))
    if original_len > 255:
        p = Path(sanitized)
        ext = p.suffix
        stem = p.stem
        if ext:
            while len((stem + ext).encode('utf-8')) > 255 and stem:
                stem = stem[:-1]
            sanitized = stem + ext
        else:
            while len(sanitized.encode('utf-8')) > 255 and sanitized:
                sanitized = sanitized[:-1]
        log.debug(f"Truncated filename from {original_len} to {len(sanitized.encode('utf-8'))} bytes: '{sanitized}'")

    return sanitized


def _clean_chars(text: str) -> str:
    text = _UNSAFE_PATH_CHARS.sub("_", text)
    return re.sub(r"\s+", " ", text)


def sanitize_path(path: str | PurePath, max_length: int = MAX_PATH_LENGTH, root: str | PurePath | None = None) -> Path:
    """Make a destination path safe for common filesystems.

    Replaces < > : " | ? * and backslash with "_", collapses whitespace runs,
    and when the result is longer than max_length truncates the final
    segment's base name (directory and extension are kept). When root is
    given, characters under root are left untouched but still count toward
    the length. Idempotent.

    Raises OrganizeError when the directory and extension alone leave no room
    for a base name.
    """
    text = str(path)
    if root is not None:
        prefix = str(root).rstrip("/")
        if text.startswith(prefix + "/"):
            text = prefix + _clean_chars(text[len(prefix):])
        else:
            text = _clean_chars(text)
    else:
        text = _clean_chars(text)

    if len(text) <= max_length:
        return Path(text)

    p = PurePath(text)
    ext = p.suffix
    directory = str(p.parent)
    stem = p.name[: len(p.name) - len(ext)] if ext else p.name
    room = max_length - len(directory) - len(ext) - 1
    if room < 1:
        raise OrganizeError(
            f"Path cannot be shortened to {max_length} characters: {text}"
        )
    # rstrip so a cut mid-phrase does not leave trailing whitespace
    truncated = stem[:room].rstrip() or stem[:room]
    result = Path(directory) / f"{truncated}{ext}"
    log.debug(f"Truncated path from {len(text)} to {len(str(result))} characters")
    return result
