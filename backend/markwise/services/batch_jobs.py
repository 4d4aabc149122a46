"""Batch enrichment job lifecycle.

A job enriches every bookmark the user filed under the catch-all tag. The
service owns the job row: it creates it, hands the bookmarks to a runner
task registered in the :class:`JobRegistry`, folds each per-bookmark outcome
into the counters with atomic ``UPDATE`` statements, and settles the final
status. Workers never touch the row directly.

Status transitions::

    running --pause()--> pausing
    running/pausing --worklist drained--> completed | paused
    running/pausing --fatal error / orphaned on read--> failed

A job with nothing to process is created directly as ``completed``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy import case, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from markwise.models.bookmark import TargetBookmark
from markwise.models.job import (
    ACTIVE_STATUSES,
    MAX_CONCURRENCY,
    MIN_CONCURRENCY,
    BatchJob,
    BatchJobRead,
    BatchJobStatus,
    PauseBatchJobRequest,
    StartBatchJobRequest,
)
from markwise.services.batch_runner import (
    UNKNOWN_ERROR,
    BatchItemResult,
    default_error_message,
    run_batch,
)
from markwise.services.bookmarks import BookmarkStore
from markwise.services.enrichment import BookmarkEnricher, TagCache
from markwise.services.job_registry import JobRegistry
from markwise.services.tags import TagStore

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_LEN = 500
STALE_JOB_MESSAGE = (
    "background runner was interrupted, likely a process restart; "
    "please restart the task"
)


class BatchJobError(Exception):
    """Base class for errors reported back to the caller of the service."""


class InvalidConcurrencyError(BatchJobError):
    pass


class BatchJobNotFoundError(BatchJobError):
    pass


class BatchJobFinishedError(BatchJobError):
    pass


def normalize_job_error_message(message: str | None) -> str:
    """Trim a failure message to fit ``BatchJob.last_error``."""
    text = (message or "").strip() or UNKNOWN_ERROR
    if len(text) <= LAST_ERROR_MAX_LEN:
        return text
    return f"{text[: LAST_ERROR_MAX_LEN - 3]}..."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class BatchRunOptions:
    job_id: int
    user_id: str
    target_tag_name: str
    concurrency: int
    bookmarks: list[TargetBookmark]


class BatchJobService:
    __slots__ = (
        "_engine",
        "_registry",
        "_enricher",
        "_tags",
        "_bookmarks",
        "_target_tag_name",
        "_default_concurrency",
    )

    def __init__(
        self,
        engine: Engine,
        registry: JobRegistry,
        enricher: BookmarkEnricher,
        tag_store: TagStore,
        bookmark_store: BookmarkStore,
        target_tag_name: str = "Other",
        default_concurrency: int = 3,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._enricher = enricher
        self._tags = tag_store
        self._bookmarks = bookmark_store
        self._target_tag_name = target_tag_name
        self._default_concurrency = default_concurrency

    # ── reads ────────────────────────────────────────────────────

    def _read_job(self, job_id: int) -> BatchJobRead | None:
        with Session(self._engine) as session:
            job = session.get(BatchJob, job_id)
            return BatchJobRead.model_validate(job) if job else None

    def _read_latest(self, user_id: str) -> BatchJobRead | None:
        with Session(self._engine) as session:
            job = session.exec(
                select(BatchJob)
                .where(BatchJob.user_id == user_id)
                .order_by(col(BatchJob.created_at).desc(), col(BatchJob.id).desc())
            ).first()
            return BatchJobRead.model_validate(job) if job else None

    def _update(self, job_id: int, *criteria, **values) -> int:
        """Run one UPDATE against a job row, returning the affected row count."""
        values.setdefault("updated_at", _utcnow())
        stmt = (
            update(BatchJob)
            .where(col(BatchJob.id) == job_id, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with Session(self._engine) as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount

    # ── stale detection ──────────────────────────────────────────

    def _fail_stale(self, job_id: int) -> bool:
        now = _utcnow()
        changed = self._update(
            job_id,
            col(BatchJob.status).in_(ACTIVE_STATUSES),
            status=BatchJobStatus.FAILED.value,
            last_error=STALE_JOB_MESSAGE,
            finished_at=now,
            updated_at=now,
        )
        if changed:
            logger.warning("Batch job %s has no live runner, marked as failed", job_id)
        return bool(changed)

    def _fail_if_stale(self, job: BatchJobRead | None) -> BatchJobRead | None:
        if job is None:
            return None
        if job.status.is_active and not self._registry.is_running(job.id):
            self._fail_stale(job.id)
            return self._read_job(job.id) or job
        return job

    def recover_orphaned_jobs(self) -> int:
        """Fail every running/pausing job without a live runner.

        Meant to be called once at process startup; reads do the same lazily.
        """
        with Session(self._engine) as session:
            job_ids = session.exec(
                select(BatchJob.id).where(col(BatchJob.status).in_(ACTIVE_STATUSES))
            ).all()
        recovered = sum(
            1 for job_id in job_ids
            if not self._registry.is_running(job_id) and self._fail_stale(job_id)
        )
        if recovered:
            logger.info("Recovered %d orphaned batch job(s)", recovered)
        return recovered

    # ── public API ───────────────────────────────────────────────

    async def start(self, user_id: str, concurrency: int | None = None) -> BatchJobRead:
        """Start a batch job for ``user_id``, or return the one already active.

        ``concurrency`` defaults to the service's configured default.

        Returns as soon as the job row exists; the bookmarks are processed by
        a background task.
        """
        try:
            request = StartBatchJobRequest(
                concurrency=self._default_concurrency if concurrency is None else concurrency
            )
        except ValidationError as exc:
            raise InvalidConcurrencyError(
                f"concurrency must be an integer between {MIN_CONCURRENCY} "
                f"and {MAX_CONCURRENCY}"
            ) from exc

        latest = self._fail_if_stale(self._read_latest(user_id))
        if latest is not None and latest.status.is_active:
            logger.info("Batch job %s already active for user %s", latest.id, user_id)
            return latest

        targets = self._bookmarks.find_target_bookmarks(user_id, self._target_tag_name)
        now = _utcnow()
        job = BatchJob(
            user_id=user_id,
            status=(BatchJobStatus.RUNNING if targets else BatchJobStatus.COMPLETED).value,
            target_tag_name=self._target_tag_name,
            concurrency=request.concurrency,
            total_count=len(targets),
            started_at=now,
            finished_at=None if targets else now,
            created_at=now,
            updated_at=now,
        )
        try:
            with Session(self._engine) as session:
                session.add(job)
                session.commit()
                session.refresh(job)
                snapshot = BatchJobRead.model_validate(job)
        except IntegrityError:
            # A concurrent start() for the same user inserted its row first
            existing = self._read_latest(user_id)
            if existing is not None and existing.status.is_active:
                return existing
            raise

        logger.info(
            "Created batch job %s for user %s: %d bookmark(s), concurrency %d",
            snapshot.id, user_id, snapshot.total_count, snapshot.concurrency,
        )
        if targets:
            self._start_runner(
                BatchRunOptions(
                    job_id=snapshot.id,
                    user_id=user_id,
                    target_tag_name=self._target_tag_name,
                    concurrency=request.concurrency,
                    bookmarks=targets,
                )
            )
        return snapshot

    def get_latest(self, user_id: str) -> BatchJobRead | None:
        return self._fail_if_stale(self._read_latest(user_id))

    def pause(self, user_id: str, job_id: int) -> BatchJobRead:
        """Ask the runner to stop claiming bookmarks.

        Pausing a job that is already pausing returns it unchanged.
        """
        try:
            request = PauseBatchJobRequest(job_id=job_id)
        except ValidationError as exc:
            raise BatchJobNotFoundError("job not found") from exc

        job = self._read_job(request.job_id)
        if job is None or job.user_id != user_id:
            raise BatchJobNotFoundError("job not found")

        job = self._fail_if_stale(job)
        if job.status.is_finished:
            raise BatchJobFinishedError("job already finished, cannot pause")
        if job.status is BatchJobStatus.PAUSING:
            return job

        changed = self._update(
            job.id,
            col(BatchJob.status) == BatchJobStatus.RUNNING.value,
            pause_requested=True,
            status=BatchJobStatus.PAUSING.value,
        )
        current = self._read_job(job.id) or job
        if not changed and current.status.is_finished:
            # The runner settled the job between the read and the update
            raise BatchJobFinishedError("job already finished, cannot pause")
        if changed:
            logger.info("Pause requested for batch job %s", job.id)
        return current

    # ── runner callbacks ─────────────────────────────────────────

    def should_stop_dispatch(self, job_id: int) -> bool:
        job = self._read_job(job_id)
        if job is None:
            return True
        return job.status.is_finished or job.pause_requested

    def record_progress(self, job_id: int, result: BatchItemResult) -> None:
        values: dict = {"processed_count": col(BatchJob.processed_count) + 1}
        if result.ok:
            values["success_count"] = col(BatchJob.success_count) + 1
        else:
            message = normalize_job_error_message(result.message)
            values["failed_count"] = col(BatchJob.failed_count) + 1
            values["last_error"] = message
            logger.warning("Batch job %s: bookmark failed: %s", job_id, message)
        self._update(job_id, **values)

    def finalize(self, job_id: int) -> None:
        """Settle a drained job as ``paused`` or ``completed``.

        Jobs that already reached a final status are left alone.
        """
        now = _utcnow()
        next_status = case(
            (
                or_(
                    col(BatchJob.pause_requested) == True,  # noqa: E712
                    col(BatchJob.status) == BatchJobStatus.PAUSING.value,
                ),
                BatchJobStatus.PAUSED.value,
            ),
            else_=BatchJobStatus.COMPLETED.value,
        )
        changed = self._update(
            job_id,
            col(BatchJob.status).in_(ACTIVE_STATUSES),
            status=next_status,
            finished_at=now,
            updated_at=now,
        )
        if changed:
            job = self._read_job(job_id)
            if job is not None:
                logger.info(
                    "Batch job %s %s: %d/%d processed, %d failed",
                    job_id, job.status.value, job.processed_count,
                    job.total_count, job.failed_count,
                )

    def mark_fatal(self, job_id: int, message: str) -> None:
        now = _utcnow()
        self._update(
            job_id,
            status=BatchJobStatus.FAILED.value,
            last_error=normalize_job_error_message(message),
            finished_at=now,
            updated_at=now,
        )

    # ── background runner ────────────────────────────────────────

    def _start_runner(self, options: BatchRunOptions) -> None:
        self._registry.spawn(options.job_id, self._supervise(options))

    async def _supervise(self, options: BatchRunOptions) -> None:
        try:
            await self._run_job(options)
        except Exception as exc:
            logger.exception("Batch job %s aborted", options.job_id)
            try:
                self.mark_fatal(options.job_id, default_error_message(exc))
            except Exception:
                logger.exception("Could not record failure of batch job %s", options.job_id)

    async def _run_job(self, options: BatchRunOptions) -> None:
        if not options.bookmarks:
            self.finalize(options.job_id)
            return

        tag_cache = TagCache(self._tags, options.user_id)

        async def enrich(bookmark: TargetBookmark) -> None:
            await self._enricher.process_single_bookmark(
                bookmark,
                user_id=options.user_id,
                target_tag_name=options.target_tag_name,
                load_tags=tag_cache.load,
            )

        await run_batch(
            items=options.bookmarks,
            limit=options.concurrency,
            should_stop=lambda: self.should_stop_dispatch(options.job_id),
            worker=enrich,
            on_item_done=lambda result: self.record_progress(options.job_id, result),
        )
        self.finalize(options.job_id)
