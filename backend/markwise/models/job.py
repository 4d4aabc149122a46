"""Batch enrichment job model: one row per run, never deleted."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel
from pydantic import Field as PydanticField
from sqlalchemy import CheckConstraint, Index, text
from sqlmodel import Field, SQLModel

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 5


class BatchJobStatus(str, Enum):
    RUNNING = "running"
    PAUSING = "pausing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        """A runner is (or should be) attached to the job."""
        return self in (BatchJobStatus.RUNNING, BatchJobStatus.PAUSING)

    @property
    def is_finished(self) -> bool:
        """The job can no longer be paused."""
        return self in (
            BatchJobStatus.PAUSED,
            BatchJobStatus.COMPLETED,
            BatchJobStatus.FAILED,
        )


ACTIVE_STATUSES = tuple(s.value for s in BatchJobStatus if s.is_active)

_ACTIVE_STATUS_SQL = "status IN ('running', 'pausing')"


class BatchJob(SQLModel, table=True):
    __tablename__ = "batch_jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'pausing', 'paused', 'completed', 'failed')",
            name="ck_batch_jobs_status",
        ),
        CheckConstraint(
            f"concurrency BETWEEN {MIN_CONCURRENCY} AND {MAX_CONCURRENCY}",
            name="ck_batch_jobs_concurrency",
        ),
        # At most one running/pausing job per user
        Index(
            "uq_batch_jobs_active_user",
            "user_id",
            unique=True,
            sqlite_where=text(_ACTIVE_STATUS_SQL),
            postgresql_where=text(_ACTIVE_STATUS_SQL),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    status: str = Field(default=BatchJobStatus.RUNNING.value)
    target_tag_name: str
    concurrency: int = Field(default=3)
    total_count: int = Field(default=0)
    processed_count: int = Field(default=0)
    success_count: int = Field(default=0)
    failed_count: int = Field(default=0)
    pause_requested: bool = Field(default=False)
    last_error: str | None = Field(default=None, max_length=500)
    started_at: datetime | None = Field(default=None)
    finished_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# --- Pydantic schemas ---


class StartBatchJobRequest(BaseModel):
    concurrency: int = PydanticField(ge=MIN_CONCURRENCY, le=MAX_CONCURRENCY, strict=True)


class PauseBatchJobRequest(BaseModel):
    job_id: int = PydanticField(gt=0, strict=True)


class BatchJobRead(BaseModel):
    id: int
    user_id: str
    status: BatchJobStatus
    target_tag_name: str
    concurrency: int
    total_count: int
    processed_count: int
    success_count: int
    failed_count: int
    pause_requested: bool
    last_error: str | None
    started_at: datetime | None
    finished_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
