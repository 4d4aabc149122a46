"""Tag store — per-user tag reads and idempotent creation."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from markwise.models.tag import Tag, TagRead

logger = logging.getLogger(__name__)


def _insert_ignoring_duplicates(session: Session, rows: list[dict]) -> None:
    """INSERT … ON CONFLICT DO NOTHING on (user_id, name)."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert

    stmt = insert(Tag).values(rows).on_conflict_do_nothing(
        index_elements=["user_id", "name"]
    )
    session.execute(stmt)


class TagStore:
    """Read and create tags scoped to one user at a time."""

    __slots__ = ("_engine",)

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get_all(self, user_id: str) -> list[TagRead]:
        with Session(self._engine) as session:
            tags = session.exec(
                select(Tag).where(Tag.user_id == user_id).order_by(Tag.id)
            ).all()
            return [TagRead.model_validate(t) for t in tags]

    def find_by_name(self, user_id: str, name: str) -> TagRead | None:
        with Session(self._engine) as session:
            tag = session.exec(
                select(Tag).where(Tag.user_id == user_id).where(Tag.name == name)
            ).first()
            return TagRead.model_validate(tag) if tag else None

    def create_tags_if_missing(self, names: list[str], user_id: str) -> list[TagRead]:
        """Create tags by exact name, returning every requested tag.

        A name that already exists (including one created concurrently) is
        returned as the existing row instead of raising.
        """
        unique_names = list(dict.fromkeys(n for n in names if n))
        if not unique_names:
            return []

        now = datetime.now(timezone.utc)
        with Session(self._engine) as session:
            _insert_ignoring_duplicates(
                session,
                [
                    {"user_id": user_id, "name": name, "created_at": now, "updated_at": now}
                    for name in unique_names
                ],
            )
            session.commit()
            tags = session.exec(
                select(Tag)
                .where(Tag.user_id == user_id)
                .where(col(Tag.name).in_(unique_names))
            ).all()
            by_name = {t.name: TagRead.model_validate(t) for t in tags}

        logger.debug("Ensured %d tag(s) for user %s", len(by_name), user_id)
        return [by_name[name] for name in unique_names if name in by_name]
