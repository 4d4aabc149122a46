"""Process-wide service construction for the batch enrichment engine.

The host application (web handler, worker, CLI) asks for the service here
instead of building it, so every caller in the process shares one
:class:`JobRegistry`, which is what makes stale-job detection correct.
"""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy.engine import Engine

from markwise.config import get_settings
from markwise.services.ai_models import UserModelStore
from markwise.services.analyzer import WebsiteAnalyzer
from markwise.services.batch_jobs import BatchJobService
from markwise.services.bookmarks import BookmarkStore
from markwise.services.enrichment import BookmarkEnricher
from markwise.services.job_registry import JobRegistry
from markwise.services.llm import LLMService
from markwise.services.tags import TagStore


@lru_cache
def get_job_registry() -> JobRegistry:
    return JobRegistry()


@lru_cache
def get_llm_service() -> LLMService:
    settings = get_settings()
    return LLMService(
        ollama_url=settings.ollama_url,
        model=settings.llm_model,
        timeout=settings.llm_timeout_seconds,
        fallback_url=settings.fallback_llm_url,
        fallback_api_key=settings.fallback_llm_api_key,
        fallback_model=settings.fallback_llm_model,
    )


def get_website_analyzer(engine: Engine) -> WebsiteAnalyzer:
    settings = get_settings()
    return WebsiteAnalyzer(
        get_llm_service(),
        fetch_timeout=settings.analyzer_fetch_timeout_seconds,
        max_chars=settings.analyzer_max_page_chars,
        max_tags=settings.analyzer_max_tags,
        user_agent=settings.analyzer_user_agent,
        resolve_endpoint=UserModelStore(engine).resolve_active,
    )


@lru_cache
def get_batch_job_service() -> BatchJobService:
    from markwise.db import engine

    settings = get_settings()
    tag_store = TagStore(engine)
    bookmark_store = BookmarkStore(engine)
    return BatchJobService(
        engine=engine,
        registry=get_job_registry(),
        enricher=BookmarkEnricher(get_website_analyzer(engine), tag_store, bookmark_store),
        tag_store=tag_store,
        bookmark_store=bookmark_store,
        target_tag_name=settings.batch_target_tag_name,
        default_concurrency=settings.batch_default_concurrency,
    )
