"""Tests for reconciling suggested tag names with existing tags."""
from __future__ import annotations

from markwise.models.tag import TagRead
from markwise.utils.tag_matching import (
    get_unmatched_tag_names,
    map_tag_names_to_tag_ids,
    normalize_tag_name,
    sanitize_ai_tag_names,
)


def _tags(*names: str) -> list[TagRead]:
    return [TagRead(id=i, name=name) for i, name in enumerate(names, start=1)]


# --- normalisation ---


def test_normalize_strips_quotes_spaces_and_case():
    assert normalize_tag_name('  "Machine  Learning" ') == "machinelearning"


def test_normalize_folds_full_width_characters():
    assert normalize_tag_name("ＰＹＴＨＯＮ") == "python"


def test_sanitize_dedupes_on_normalised_form_keeping_first_spelling():
    names = ["Python", " python ", "“Python”", "Web  Dev", "web dev", "", None]
    assert sanitize_ai_tag_names(names) == ["Python", "Web Dev"]


def test_sanitize_empty_input():
    assert sanitize_ai_tag_names(None) == []
    assert sanitize_ai_tag_names([]) == []


# --- unmatched names ---


def test_unmatched_skips_exact_matches():
    tags = _tags("Python", "Databases")
    assert get_unmatched_tag_names(["python", "Rust"], tags) == ["Rust"]


def test_unmatched_keeps_loose_matches_for_creation():
    # Only exact hits suppress creation
    tags = _tags("JavaScript")
    assert get_unmatched_tag_names(["JavaScripts"], tags) == ["JavaScripts"]


def test_unmatched_drops_single_character_names():
    tags = _tags("Python")
    assert get_unmatched_tag_names(["C", "Go"], tags) == ["Go"]


def test_unmatched_without_existing_tags_returns_sanitized():
    assert get_unmatched_tag_names([" Rust ", "rust"], []) == ["Rust"]


def test_unmatched_without_existing_tags_keeps_short_names():
    assert get_unmatched_tag_names(["C", "Go"], []) == ["C", "Go"]


# --- mapping to ids ---


def test_map_exact_matches_in_suggestion_order():
    tags = _tags("Python", "Web", "Databases")
    assert map_tag_names_to_tag_ids(["databases", "PYTHON"], tags) == [3, 1]


def test_map_unique_loose_match():
    tags = _tags("JavaScript", "Cooking")
    assert map_tag_names_to_tag_ids(["JavaScripts"], tags) == [1]


def test_map_ambiguous_loose_match_resolves_to_nothing():
    tags = _tags("Design Systems", "Design System")
    # "designsystem" is exact for tag 2, so it wins outright
    assert map_tag_names_to_tag_ids(["Design System"], tags) == [2]
    # "designsyst" loosely matches both, so it is dropped
    assert map_tag_names_to_tag_ids(["Design Syst"], tags) == []


def test_map_short_names_never_loosely_match():
    tags = _tags("Golang")
    assert map_tag_names_to_tag_ids(["Go"], tags) == []


def test_map_dedupes_ids():
    tags = _tags("Python")
    assert map_tag_names_to_tag_ids(["Python", "Pythons"], tags) == [1]


def test_map_empty_inputs():
    assert map_tag_names_to_tag_ids([], _tags("Python")) == []
    assert map_tag_names_to_tag_ids(["Python"], []) == []
