"""Service for the background job queue."""

import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, List
from sqlalchemy.orm import Session

from ..core.config import settings
from ..exceptions import JobNotFoundError
from ..models import BackgroundJob

logger = logging.getLogger(__name__)

JOB_TYPES = ("tier_migration", "deployment")


class JobService:
    """
    Manages the lifecycle of background jobs.

    Jobs are enqueued explicitly by services, claimed by the worker, and
    tracked through queued -> running -> completed/failed transitions.
    A second job for a target that already has one queued is
    deduplicated.
    """

    def __init__(self, db: Session):
        self.db = db

    def enqueue(
        self,
        job_type: str,
        target_type: str,
        target_id: int,
        payload: Optional[dict] = None,
        commit: bool = True,
    ) -> BackgroundJob:
        """
        Create a job, or return the queued one for the same target.

        A running job does not absorb the request: it may already be past
        the point where it reads its target, so the new state gets its own job.

        Args:
            job_type: tier_migration or deployment
            target_type: file, version, version_file or deployment
            target_id: Primary key of the target row
            payload: Job-specific parameters
            commit: Commit immediately; pass False to join the caller's transaction
        """
        if job_type not in JOB_TYPES:
            raise ValueError(f"Unknown job type: {job_type}")

        existing = (
            self.db.query(BackgroundJob)
            .filter(
                BackgroundJob.job_type == job_type,
                BackgroundJob.target_type == target_type,
                BackgroundJob.target_id == target_id,
                BackgroundJob.status == "queued",
            )
            .first()
        )
        if existing:
            if payload:
                # Latest request wins for a job nobody has picked up yet
                existing.payload = payload
                if commit:
                    self.db.commit()
            logger.info(f"Job already queued for {target_type} {target_id}: {existing.id}")
            return existing

        job = BackgroundJob(
            id=str(uuid.uuid4()),
            job_type=job_type,
            target_type=target_type,
            target_id=target_id,
            payload=payload or {},
            status="queued",
        )
        self.db.add(job)
        if commit:
            self.db.commit()
            self.db.refresh(job)
        else:
            self.db.flush()

        logger.info(f"Enqueued {job_type} job {job.id} for {target_type} {target_id}")
        return job

    def claim_next(self, job_type: Optional[str] = None) -> Optional[BackgroundJob]:
        """
        Claim the oldest queued job for processing.

        The status flip is a conditional UPDATE, so two workers polling at
        once cannot both claim the same job.

        Returns:
            The claimed job, or None if no queued jobs exist
        """
        query = self.db.query(BackgroundJob).filter(BackgroundJob.status == "queued")
        if job_type:
            query = query.filter(BackgroundJob.job_type == job_type)

        for candidate in query.order_by(BackgroundJob.created_at.asc(), BackgroundJob.id.asc()).limit(5).all():
            claimed = (
                self.db.query(BackgroundJob)
                .filter(BackgroundJob.id == candidate.id, BackgroundJob.status == "queued")
                .update(
                    {"status": "running", "started_at": datetime.now(timezone.utc)},
                    synchronize_session=False,
                )
            )
            self.db.commit()
            if claimed:
                self.db.refresh(candidate)
                logger.info(f"Claimed {candidate.job_type} job {candidate.id}")
                return candidate
        return None

    def complete(self, job_id: str) -> BackgroundJob:
        """Mark a job as successfully completed."""
        job = self.get_job(job_id)

        job.status = "completed"
        job.error_message = None
        job.completed_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(job)

        logger.info(f"Job {job_id} completed successfully")
        return job

    def fail(self, job_id: str, error_message: str, retryable: bool = True) -> BackgroundJob:
        """
        Mark a job as failed.

        Retryable failures below ``job_max_retries`` go back to the queue.

        Args:
            job_id: The job to mark as failed
            error_message: Description of what went wrong
            retryable: False for permanent rejections (e.g. invariant violations)
        """
        job = self.get_job(job_id)

        job.retry_count += 1

        if retryable and job.retry_count <= settings.job_max_retries:
            job.status = "queued"
            job.error_message = f"Retry after: {error_message}"
            logger.info(f"Job {job_id} failed, re-queuing (retry {job.retry_count})")
        else:
            job.status = "failed"
            job.error_message = error_message
            job.completed_at = datetime.now(timezone.utc)
            logger.warning(f"Job {job_id} failed permanently: {error_message}")

        self.db.commit()
        self.db.refresh(job)
        return job

    def get_job(self, job_id: str) -> BackgroundJob:
        """Get a specific job by ID."""
        job = self.db.get(BackgroundJob, job_id)
        if not job:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(
        self,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[BackgroundJob]:
        """Recent jobs, newest first."""
        query = self.db.query(BackgroundJob)
        if status:
            query = query.filter(BackgroundJob.status == status)
        if job_type:
            query = query.filter(BackgroundJob.job_type == job_type)
        return query.order_by(BackgroundJob.created_at.desc()).limit(limit).all()
