"""Reconcile LLM-suggested tag names with a user's existing tags.

Names are compared in a normalised form (NFKC, surrounding quotes and all
whitespace removed, lowercased). An exact normalised hit always wins; failing
that, a *unique* loose hit (containment or subsequence between names of
similar length) is accepted. Ambiguous loose hits resolve to nothing so a
suggestion never lands on the wrong tag.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Sequence
from typing import Protocol

_EDGE_CHARS = " \t\r\n\"'`“”‘’"
_MIN_LOOSE_LEN = 3
_MIN_LOOSE_RATIO = 0.6
_MIN_NEW_TAG_LEN = 2


class NamedTag(Protocol):
    id: int
    name: str


def _clean(name: str) -> str:
    return unicodedata.normalize("NFKC", name).strip(_EDGE_CHARS)


def normalize_tag_name(name: str) -> str:
    """Comparison key for a tag name."""
    return re.sub(r"\s+", "", _clean(name)).lower()


def sanitize_ai_tag_names(tag_names: Iterable[str | None] | None) -> list[str]:
    """Tidy LLM output and drop empties and duplicates, keeping first spelling."""
    if not tag_names:
        return []
    seen: set[str] = set()
    result: list[str] = []
    for raw in tag_names:
        cleaned = re.sub(r"\s{2,}", " ", _clean(raw or "")).strip()
        key = normalize_tag_name(cleaned)
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return result


def _is_subsequence(short: str, long: str) -> bool:
    if not short or not long:
        return False
    it = iter(long)
    return all(ch in it for ch in short)


def _allows_loose_match(left: str, right: str) -> bool:
    short_len, long_len = sorted((len(left), len(right)))
    if short_len < _MIN_LOOSE_LEN:
        return False
    return short_len / long_len >= _MIN_LOOSE_RATIO


def _loosely_equal(left: str, right: str) -> bool:
    return _allows_loose_match(left, right) and (
        left in right
        or right in left
        or _is_subsequence(left, right)
        or _is_subsequence(right, left)
    )


def _index_tags(tags: Sequence[NamedTag]) -> list[tuple[int, str]]:
    indexed = [(tag.id, normalize_tag_name(tag.name or "")) for tag in tags]
    return [(tag_id, key) for tag_id, key in indexed if key]


def _resolve(key: str, indexed: list[tuple[int, str]]) -> tuple[int | None, bool]:
    """Return (tag_id, is_exact) for a normalised name."""
    for tag_id, tag_key in indexed:
        if tag_key == key:
            return tag_id, True
    loose = [tag_id for tag_id, tag_key in indexed if _loosely_equal(key, tag_key)]
    if len(loose) == 1:
        return loose[0], False
    return None, False


def get_unmatched_tag_names(
    tag_names: Iterable[str | None] | None, tags: Sequence[NamedTag]
) -> list[str]:
    """Suggested names with no exact counterpart among ``tags``.

    These are the names worth creating. A user without any tags gets every
    sanitized name back; otherwise single-character names are skipped.
    """
    names = sanitize_ai_tag_names(tag_names)
    if not names or not tags:
        return names
    indexed = _index_tags(tags)
    result: list[str] = []
    for name in names:
        key = normalize_tag_name(name)
        if len(key) < _MIN_NEW_TAG_LEN:
            continue
        _, exact = _resolve(key, indexed)
        if not exact:
            result.append(name)
    return result


def map_tag_names_to_tag_ids(
    tag_names: Iterable[str | None] | None, tags: Sequence[NamedTag]
) -> list[int]:
    """Resolve suggested names to tag ids, deduplicated, in suggestion order."""
    if not tag_names or not tags:
        return []
    indexed = _index_tags(tags)
    result: list[int] = []
    for name in sanitize_ai_tag_names(tag_names):
        tag_id, _ = _resolve(normalize_tag_name(name), indexed)
        if tag_id is not None and tag_id not in result:
            result.append(tag_id)
    return result
