"""Per-bookmark AI enrichment: analyze, reconcile tags, persist."""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from markwise.models.bookmark import TargetBookmark
from markwise.models.tag import TagRead
from markwise.services.analyzer import WebsiteAnalysis
from markwise.services.bookmarks import BookmarkStore
from markwise.services.tags import TagStore
from markwise.utils.tag_matching import (
    get_unmatched_tag_names,
    map_tag_names_to_tag_ids,
    sanitize_ai_tag_names,
)

logger = logging.getLogger(__name__)

LoadTags = Callable[..., list[TagRead]]


class Analyzer(Protocol):
    async def analyze(
        self, url: str, known_tag_names: list[str], user_id: str
    ) -> WebsiteAnalysis: ...


class TagCache:
    """Memoised tag list for one user for the duration of a batch run."""

    __slots__ = ("_store", "_user_id", "_tags")

    def __init__(self, store: TagStore, user_id: str) -> None:
        self._store = store
        self._user_id = user_id
        self._tags: list[TagRead] | None = None

    def load(self, force: bool = False) -> list[TagRead]:
        if self._tags is None or force:
            self._tags = self._store.get_all(self._user_id)
        return self._tags


class BookmarkEnricher:
    __slots__ = ("_analyzer", "_tags", "_bookmarks")

    def __init__(
        self, analyzer: Analyzer, tag_store: TagStore, bookmark_store: BookmarkStore
    ) -> None:
        self._analyzer = analyzer
        self._tags = tag_store
        self._bookmarks = bookmark_store

    async def process_single_bookmark(
        self,
        bookmark: TargetBookmark,
        user_id: str,
        target_tag_name: str,
        load_tags: LoadTags,
    ) -> None:
        """Rewrite one bookmark from the analyzer's output.

        Any failure propagates; the batch runner records it against the job.
        """
        tags = load_tags()
        analyzed = await self._analyzer.analyze(
            bookmark.url, [tag.name for tag in tags], user_id
        )

        ai_tag_names = sanitize_ai_tag_names(analyzed.tags)
        missing = get_unmatched_tag_names(ai_tag_names, tags)
        if missing:
            self._tags.create_tags_if_missing(missing, user_id)
            load_tags(force=True)
            logger.info(
                "Created %d tag(s) for user %s while enriching bookmark %s",
                len(missing), user_id, bookmark.id,
            )

        latest = load_tags()
        related_tag_ids = map_tag_names_to_tag_ids(ai_tag_names, latest)

        if not related_tag_ids:
            fallback = next((t for t in latest if t.name == target_tag_name), None)
            if fallback is None:
                self._tags.create_tags_if_missing([target_tag_name], user_id)
                refreshed = load_tags(force=True)
                fallback = next((t for t in refreshed if t.name == target_tag_name), None)
            related_tag_ids = [fallback.id] if fallback else []

        self._bookmarks.update_for_user(
            user_id,
            bookmark.id,
            name=analyzed.title,
            icon=analyzed.favicon,
            description=analyzed.description,
            related_tag_ids=related_tag_ids,
        )
