from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


class BookmarkTag(SQLModel, table=True):
    """Many-to-many junction table between bookmarks and tags."""
    __tablename__ = "bookmark_tags"

    bookmark_id: int = Field(foreign_key="bookmarks.id", primary_key=True)
    tag_id: int = Field(foreign_key="tags.id", primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Bookmark(SQLModel, table=True):
    __tablename__ = "bookmarks"

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    name: str
    url: str
    description: str | None = Field(default=None)
    icon: str | None = Field(default=None)
    # Set by the website-parsing path when the page HTML could not be fetched
    ai_html_fetch_failed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class TargetBookmark:
    """The slice of a bookmark the batch runner needs."""

    id: int
    url: str
