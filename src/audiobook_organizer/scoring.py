"""Score metadata candidates against a book's inferred identity.

Deterministic string heuristics only: exact, containment, word overlap and
positional character agreement. Weights: title 60, author 30, series 10.
Only fields present on both sides count toward the maximum.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from loguru import logger

from .models import InferredIdentity, MatchResult, MetadataCandidate, SeriesInfo

log = logger.bind(stage="scoring")

TITLE_WEIGHT = 60
AUTHOR_WEIGHT = 30
SERIES_WEIGHT = 10

MIN_WORD_LENGTH = 3


def normalize_string(value: str) -> str:
    value = value.lower()
    value = re.sub(r"[^\w\s]", "", value)
    return re.sub(r"\s+", " ", value).strip()


def calculate_string_match_score(a: str | None, b: str | None) -> float:
    """Similarity of two strings in [0, 1]."""
    if not a or not b:
        return 0.0

    norm1 = normalize_string(a)
    norm2 = normalize_string(b)
    if not norm1 or not norm2:
        return 0.0
    if norm1 == norm2:
        return 1.0

    shorter, longer = sorted((len(norm1), len(norm2)))
    if norm1 in norm2 or norm2 in norm1:
        return 0.8 * shorter / longer

    words1 = norm1.split(" ")
    words2 = norm2.split(" ")
    matching = 0
    for w1 in words1:
        if len(w1) < MIN_WORD_LENGTH:
            continue
        for w2 in words2:
            if len(w2) < MIN_WORD_LENGTH:
                continue
            if w1 == w2 or w1 in w2 or w2 in w1:
                matching += 1
                break
    # Several words on one side can match the same word on the other
    matching = min(matching, len(words1), len(words2))
    word_ratio = matching / max(len(words1), len(words2))

    same_chars = sum(1 for c1, c2 in zip(norm1, norm2) if c1 == c2)
    char_ratio = same_chars / longer

    return 0.7 * word_ratio + 0.3 * char_ratio


def _leading_int(value: str) -> int | None:
    match = re.match(r"\s*([+-]?\d+)", value)
    return int(match.group(1)) if match else None


def positions_match(a: str | None, b: str | None) -> bool:
    """True when two series positions are equal as strings or as integers."""
    if not a or not b:
        return False
    if str(a).strip() == str(b).strip():
        return True
    left, right = _leading_int(str(a)), _leading_int(str(b))
    return left is not None and left == right


def _series_score(ours: SeriesInfo, theirs: SeriesInfo) -> float:
    name_score = calculate_string_match_score(ours.name, theirs.name)
    position_score = 1.0 if positions_match(ours.position, theirs.position) else 0.0
    return 0.7 * name_score + 0.3 * position_score


def calculate_match_score(
    identity: InferredIdentity | None,
    candidate: MetadataCandidate | None,
) -> float:
    """Weighted confidence in [0, 1] that candidate describes identity.

    Returns exactly 0 when no field is comparable.
    """
    if identity is None or candidate is None:
        return 0.0

    score = 0.0
    max_score = 0

    if identity.title and candidate.title:
        max_score += TITLE_WEIGHT
        score += calculate_string_match_score(identity.title, candidate.title) * TITLE_WEIGHT

    if identity.author and candidate.authors:
        max_score += AUTHOR_WEIGHT
        best = max(
            (calculate_string_match_score(identity.author, a.name) for a in candidate.authors),
            default=0.0,
        )
        score += best * AUTHOR_WEIGHT

    if identity.series and identity.series.name and candidate.series and candidate.series.name:
        max_score += SERIES_WEIGHT
        score += _series_score(identity.series, candidate.series) * SERIES_WEIGHT

    if max_score == 0:
        return 0.0
    return score / max_score


def rank_metadata_results(
    identity: InferredIdentity,
    candidates: Iterable[MetadataCandidate],
) -> list[MatchResult]:
    """Score every candidate and sort best-first. Ties keep input order."""
    results = [MatchResult(c, calculate_match_score(identity, c)) for c in candidates]
    # sorted() is stable
    results = sorted(results, key=lambda r: r.score, reverse=True)
    if results:
        best = results[0]
        log.debug(
            f"Ranked {len(results)} candidate(s); best {best.candidate.title!r} "
            f"score={best.score:.3f}"
        )
    return results


def select_best(results: list[MatchResult], threshold: float) -> MatchResult | None:
    """Top-ranked result when it clears threshold, else None."""
    if not results:
        return None
    best = results[0]
    if best.score >= threshold:
        return best
    log.debug(f"Best score {best.score:.3f} below threshold {threshold}")
    return None
