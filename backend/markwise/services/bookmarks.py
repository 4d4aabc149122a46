"""Bookmark store — the reads and writes the batch engine needs."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from markwise.models.bookmark import Bookmark, BookmarkTag, TargetBookmark
from markwise.models.tag import Tag

logger = logging.getLogger(__name__)


class BookmarkNotFoundError(Exception):
    """Raised when a bookmark does not exist or belongs to another user."""


class BookmarkStore:
    __slots__ = ("_engine",)

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def find_target_bookmarks(self, user_id: str, tag_name: str) -> list[TargetBookmark]:
        """Bookmarks tagged ``tag_name`` whose HTML has not previously failed to fetch."""
        with Session(self._engine) as session:
            tag = session.exec(
                select(Tag).where(Tag.user_id == user_id).where(Tag.name == tag_name)
            ).first()
            if tag is None:
                return []

            stmt = (
                select(Bookmark.id, Bookmark.url)
                .join(BookmarkTag, col(BookmarkTag.bookmark_id) == col(Bookmark.id))
                .where(Bookmark.user_id == user_id)
                .where(BookmarkTag.tag_id == tag.id)
                .where(Bookmark.ai_html_fetch_failed == False)  # noqa: E712
                .order_by(Bookmark.id)
            )
            return [TargetBookmark(id=row[0], url=row[1]) for row in session.exec(stmt).all()]

    def update_for_user(
        self,
        user_id: str,
        bookmark_id: int,
        *,
        name: str | None,
        icon: str | None,
        description: str | None,
        related_tag_ids: list[int],
    ) -> None:
        """Rewrite a bookmark's metadata and tag links on behalf of ``user_id``.

        Tag ids the user does not own are silently dropped.
        """
        with Session(self._engine) as session:
            bookmark = session.get(Bookmark, bookmark_id)
            if bookmark is None or bookmark.user_id != user_id:
                raise BookmarkNotFoundError(f"Bookmark {bookmark_id} not found")

            wanted = list(dict.fromkeys(related_tag_ids))
            owned_ids: set[int] = set()
            if wanted:
                owned_ids = set(
                    session.exec(
                        select(Tag.id)
                        .where(Tag.user_id == user_id)
                        .where(col(Tag.id).in_(wanted))
                    ).all()
                )
            tag_ids = [tag_id for tag_id in wanted if tag_id in owned_ids]

            if name:
                bookmark.name = name
            bookmark.icon = icon or None
            bookmark.description = description or None
            bookmark.updated_at = datetime.now(timezone.utc)
            session.add(bookmark)

            session.execute(
                delete(BookmarkTag).where(col(BookmarkTag.bookmark_id) == bookmark_id)
            )
            for tag_id in tag_ids:
                session.add(BookmarkTag(bookmark_id=bookmark_id, tag_id=tag_id))
            session.commit()

        logger.debug(
            "Updated bookmark %s for user %s with %d tag(s)",
            bookmark_id, user_id, len(tag_ids),
        )
