"""Per-user AI model configs (OpenAI-compatible endpoints)."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


class UserAiModel(SQLModel, table=True):
    __tablename__ = "user_ai_models"

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    name: str
    base_url: str
    api_key: str
    model: str
    # The config the user picked; at most one per user is expected
    is_active: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
