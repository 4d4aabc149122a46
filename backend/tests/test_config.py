"""Tests for backend/markwise/config.py — Settings validation."""
from __future__ import annotations

import os
from unittest.mock import patch

import pytest


class TestBatchSettings:
    """Verify the batch enrichment settings."""

    def test_defaults(self):
        from markwise.config import Settings

        s = Settings(_env_file=None)
        assert s.batch_target_tag_name == "Other"
        assert s.batch_default_concurrency == 3

    def test_target_tag_name_is_stripped(self):
        from markwise.config import Settings

        with patch.dict(os.environ, {"BATCH_TARGET_TAG_NAME": "  Inbox  "}):
            s = Settings(_env_file=None)
        assert s.batch_target_tag_name == "Inbox"

    def test_blank_target_tag_name_rejected(self):
        from markwise.config import Settings

        with patch.dict(os.environ, {"BATCH_TARGET_TAG_NAME": "   "}):
            with pytest.raises(ValueError, match="BATCH_TARGET_TAG_NAME"):
                Settings(_env_file=None)

    @pytest.mark.parametrize("value", ["0", "6", "-1"])
    def test_default_concurrency_out_of_range(self, value):
        from markwise.config import Settings

        with patch.dict(os.environ, {"BATCH_DEFAULT_CONCURRENCY": value}):
            with pytest.raises(ValueError, match="BATCH_DEFAULT_CONCURRENCY"):
                Settings(_env_file=None)

    @pytest.mark.parametrize("value", ["1", "5"])
    def test_default_concurrency_bounds_accepted(self, value):
        from markwise.config import Settings

        with patch.dict(os.environ, {"BATCH_DEFAULT_CONCURRENCY": value}):
            s = Settings(_env_file=None)
        assert s.batch_default_concurrency == int(value)


class TestLlmSettings:
    def test_fallback_disabled_by_default(self):
        from markwise.config import Settings

        s = Settings(_env_file=None)
        assert s.fallback_llm_url == ""
        assert s.fallback_llm_model == ""

    def test_env_overrides(self):
        from markwise.config import Settings

        env = {
            "OLLAMA_URL": "http://localhost:11434",
            "LLM_MODEL": "qwen2.5",
            "ANALYZER_MAX_TAGS": "3",
        }
        with patch.dict(os.environ, env):
            s = Settings(_env_file=None)
        assert s.ollama_url == "http://localhost:11434"
        assert s.llm_model == "qwen2.5"
        assert s.analyzer_max_tags == 3
