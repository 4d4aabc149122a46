from __future__ import annotations

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from markwise.models.job import MAX_CONCURRENCY, MIN_CONCURRENCY


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    db_url: str = "sqlite:///./markwise.db"

    # LLM used by the website analyzer
    ollama_url: str = "http://ollama:11434"
    llm_model: str = "llama3.2"
    llm_timeout_seconds: float = 120.0
    # Optional cloud LLM fallback (OpenAI-compatible endpoint)
    fallback_llm_url: str = ""        # e.g. "https://api.openai.com/v1"
    fallback_llm_api_key: str = ""
    fallback_llm_model: str = ""      # if empty, uses llm_model value

    # Website analyzer
    analyzer_fetch_timeout_seconds: float = 15.0
    analyzer_max_page_chars: int = 4000  # page text excerpt sent to the LLM
    analyzer_max_tags: int = 5
    analyzer_user_agent: str = (
        "Mozilla/5.0 (compatible; MarkwiseBot/1.0; +https://github.com/markwise)"
    )

    # Batch enrichment
    batch_target_tag_name: str = "Other"  # catch-all tag whose members get enriched
    batch_default_concurrency: int = 3

    @model_validator(mode="after")
    def _check_batch_settings(self) -> Settings:
        self.batch_target_tag_name = self.batch_target_tag_name.strip()
        if not self.batch_target_tag_name:
            raise ValueError("BATCH_TARGET_TAG_NAME must not be empty")
        if not MIN_CONCURRENCY <= self.batch_default_concurrency <= MAX_CONCURRENCY:
            raise ValueError(
                f"BATCH_DEFAULT_CONCURRENCY must be between {MIN_CONCURRENCY} "
                f"and {MAX_CONCURRENCY}"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
