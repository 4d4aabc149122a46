"""Resolve the LLM endpoint a user configured for themselves."""
from __future__ import annotations

import logging

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from markwise.models.ai_model import UserAiModel
from markwise.services.llm import LLMEndpoint

logger = logging.getLogger(__name__)


class UserModelStore:
    __slots__ = ("_engine",)

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def resolve_active(self, user_id: str | None) -> LLMEndpoint | None:
        """The user's active endpoint, or None to use the server-wide LLM.

        The active config wins; otherwise the user's first usable config is
        taken. Configs with a blank URL, key or model are ignored.
        """
        if not user_id:
            return None
        with Session(self._engine) as session:
            configs = session.exec(
                select(UserAiModel)
                .where(UserAiModel.user_id == user_id)
                .order_by(col(UserAiModel.is_active).desc(), col(UserAiModel.id))
            ).all()

        for config in configs:
            endpoint = LLMEndpoint(
                base_url=config.base_url.strip(),
                api_key=config.api_key.strip(),
                model=config.model.strip(),
            )
            if endpoint.base_url and endpoint.api_key and endpoint.model:
                logger.debug("User %s uses model config %s", user_id, config.id)
                return endpoint
        return None
