from __future__ import annotations

from markwise.models.tag import Tag  # noqa: F401
from markwise.models.bookmark import Bookmark, BookmarkTag  # noqa: F401
from markwise.models.job import BatchJob  # noqa: F401
from markwise.models.ai_model import UserAiModel  # noqa: F401
