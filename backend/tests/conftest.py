from __future__ import annotations

import os

# markwise.db creates its engine at import time from get_settings().db_url,
# so the env var must be set before any markwise import.
os.environ.setdefault("DB_URL", "sqlite://")

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import markwise.models  # noqa: F401  registers SQLModel tables
from markwise.models.bookmark import Bookmark, BookmarkTag
from markwise.models.tag import Tag
from markwise.services.analyzer import WebsiteAnalysis
from markwise.services.batch_jobs import BatchJobService
from markwise.services.bookmarks import BookmarkStore
from markwise.services.enrichment import BookmarkEnricher
from markwise.services.job_registry import JobRegistry
from markwise.services.tags import TagStore

USER_ID = "user-1"
TARGET_TAG = "Other"


# ── Database fixtures ─────────────────────────────────────────────────


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine shared by every session in a test.

    StaticPool keeps a single connection so all sessions see the same
    database. Tables are recreated per test.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


# ── Data helpers ──────────────────────────────────────────────────────


@pytest.fixture(name="make_tag")
def make_tag_fixture(session):
    """Factory: insert a tag and return it."""

    def _make(name: str, user_id: str = USER_ID) -> Tag:
        tag = Tag(user_id=user_id, name=name)
        session.add(tag)
        session.commit()
        session.refresh(tag)
        return tag

    return _make


@pytest.fixture(name="make_bookmark")
def make_bookmark_fixture(session):
    """Factory: insert a bookmark linked to ``tags`` and return it."""

    def _make(
        url: str,
        user_id: str = USER_ID,
        tags: list[Tag] | None = None,
        ai_html_fetch_failed: bool = False,
    ) -> Bookmark:
        bookmark = Bookmark(
            user_id=user_id,
            name=url,
            url=url,
            ai_html_fetch_failed=ai_html_fetch_failed,
        )
        session.add(bookmark)
        session.commit()
        session.refresh(bookmark)
        for tag in tags or []:
            session.add(BookmarkTag(bookmark_id=bookmark.id, tag_id=tag.id))
        session.commit()
        session.refresh(bookmark)
        return bookmark

    return _make


# ── Service fixtures ──────────────────────────────────────────────────


@pytest.fixture(name="tag_store")
def tag_store_fixture(engine) -> TagStore:
    return TagStore(engine)


@pytest.fixture(name="bookmark_store")
def bookmark_store_fixture(engine) -> BookmarkStore:
    return BookmarkStore(engine)


@pytest.fixture(name="mock_analyzer")
def mock_analyzer_fixture() -> MagicMock:
    """Analyzer that names every page after its URL and suggests one tag."""
    analyzer = MagicMock()

    async def _analyze(url: str, known_tag_names: list[str], user_id: str) -> WebsiteAnalysis:
        return WebsiteAnalysis(
            title=f"Title of {url}",
            description="A page",
            favicon=f"{url}/favicon.ico",
            tags=["Python"],
        )

    analyzer.analyze = AsyncMock(side_effect=_analyze)
    return analyzer


@pytest.fixture(name="registry")
def registry_fixture() -> JobRegistry:
    return JobRegistry()


@pytest.fixture(name="batch_service")
def batch_service_fixture(engine, registry, mock_analyzer, tag_store, bookmark_store):
    return BatchJobService(
        engine=engine,
        registry=registry,
        enricher=BookmarkEnricher(mock_analyzer, tag_store, bookmark_store),
        tag_store=tag_store,
        bookmark_store=bookmark_store,
        target_tag_name=TARGET_TAG,
    )
