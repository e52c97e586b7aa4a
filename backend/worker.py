"""
Polling worker for background jobs.

Checks the background_jobs table every WORKER_POLL_INTERVAL seconds, claims
one queued job at a time and runs it:

- ``tier_migration``: moves a file, snapshot or version file to the tier in
  the job payload (verify-then-commit, see ContentStoreService).
- ``deployment``: hands a pending deployment to the external executor
  (DEPLOY_COMMAND) and records the outcome from its exit code.

Failed jobs are retried once automatically by the JobService.

Usage:
    python worker.py
"""

import os
import shlex
import subprocess
import sys
import time
import logging

# Add overskill to path when run from a source checkout
sys.path.insert(0, os.path.dirname(__file__))

from overskill.core.config import settings
from overskill.core.logging_config import job_id_var, setup_logging
from overskill.database import SessionLocal
from overskill.exceptions import (
    ContentIntegrityError,
    InvalidStateTransitionError,
    OverskillException,
    ValidationError,
)
from overskill.models import AppDeployment, BackgroundJob
from overskill.services.deployment_service import DeploymentService
from overskill.services.job_service import JobService
from overskill.services.tiering_service import TieringService
from overskill.storage import get_object_store

logger = logging.getLogger("worker")

# Enough stderr to hold a traceback or the executor's error summary.
# Stored in app_deployments.error_message.
MAX_ERROR_CHARS = 2000

# Errors that will not go away on retry.
_PERMANENT_ERRORS = (ValidationError, ContentIntegrityError)


def build_deploy_command(deployment: AppDeployment) -> list[str]:
    """Executor invocation for one deployment."""
    return shlex.split(settings.deploy_command) + [
        "--app", str(deployment.app_id),
        "--environment", deployment.environment,
        "--deployment", str(deployment.id),
    ]


def _record_outcome(service: DeploymentService, deployment_id: int, status: str, error: str = None) -> None:
    try:
        service.mark_outcome(deployment_id, status, error_message=error)
    except InvalidStateTransitionError:
        # The executor already reported through the outcome callback
        logger.info(f"Deployment {deployment_id} already has an outcome")


def run_deployment(db, job: BackgroundJob) -> None:
    """Run the executor for a deployment job and record the result on the deployment.

    A failed build is a deployment outcome, not a job failure: the job
    completes either way.
    """
    service = DeploymentService(db)
    deployment = db.get(AppDeployment, job.target_id)
    if deployment is None:
        logger.info(f"Deployment {job.target_id} no longer exists, skipping")
        return
    if deployment.status != "pending":
        logger.info(f"Deployment {deployment.id} is already {deployment.status}, skipping")
        return

    if not settings.deploy_command:
        _record_outcome(service, deployment.id, "failed", "No deployment executor configured (DEPLOY_COMMAND is empty)")
        return

    cmd = build_deploy_command(deployment)
    logger.info(
        f"Deploying app {deployment.app_id} to {deployment.environment}",
        extra={"deployment_id": deployment.id, "is_rollback": deployment.is_rollback},
    )
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=settings.deploy_timeout_seconds,
        )
    except subprocess.TimeoutExpired:
        _record_outcome(
            service, deployment.id, "failed",
            f"Deployment timed out after {settings.deploy_timeout_seconds} seconds",
        )
        return
    except OSError as e:
        _record_outcome(service, deployment.id, "failed", f"Could not start deployment executor: {e}")
        return

    if result.returncode == 0:
        _record_outcome(service, deployment.id, "success")
    else:
        error = result.stderr[-MAX_ERROR_CHARS:] if result.stderr else f"Exit code {result.returncode}"
        _record_outcome(service, deployment.id, "failed", error)


def process_job(job_id: str) -> None:
    """Run one claimed job in its own session and record the job outcome."""
    token = job_id_var.set(job_id)
    db = SessionLocal()
    try:
        service = JobService(db)
        job = service.get_job(job_id)
        logger.info(f"Processing {job.job_type} job {job.id} for {job.target_type} {job.target_id}")

        try:
            if job.job_type == "tier_migration":
                TieringService(db, get_object_store()).run_migration_job(job)
            elif job.job_type == "deployment":
                run_deployment(db, job)
            else:
                service.fail(job.id, f"Unknown job type: {job.job_type}", retryable=False)
                return
        except _PERMANENT_ERRORS as e:
            db.rollback()
            service.fail(job.id, e.message, retryable=False)
            return
        except OverskillException as e:
            db.rollback()
            service.fail(job.id, e.message)
            return

        service.complete(job.id)
    except Exception as e:
        logger.exception(f"Job {job_id} error")
        db.rollback()
        JobService(db).fail(job_id, str(e))
    finally:
        db.close()
        job_id_var.reset(token)


def run_once() -> bool:
    """Claim and process one job. Returns False when the queue is empty."""
    db = SessionLocal()
    try:
        job = JobService(db).claim_next()
        job_id = job.id if job else None
    finally:
        db.close()

    if job_id is None:
        return False
    process_job(job_id)
    return True


def main() -> None:
    """Poll for queued jobs and process them sequentially."""
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    logger.info(f"Worker started, polling every {settings.worker_poll_interval}s")
    if not settings.deploy_command:
        logger.warning("DEPLOY_COMMAND is empty; deployment jobs will be marked failed")

    while True:
        try:
            if not run_once():
                time.sleep(settings.worker_poll_interval)
        except KeyboardInterrupt:
            logger.info("Worker shutting down")
            break
        except Exception as e:
            logger.error(f"Worker error: {e}")
            time.sleep(settings.worker_poll_interval)


if __name__ == "__main__":
    main()
