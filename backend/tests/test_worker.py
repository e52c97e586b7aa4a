"""Tests for the background worker loop.

The worker opens its own sessions, so the test session commits before
each run to release its SQLite read lock. The deployment executor is a
patched ``subprocess.run``.
"""

import subprocess
from types import SimpleNamespace
from unittest.mock import patch

import pytest

import worker
from overskill.core.config import settings
from overskill.models import App, AppDeployment, AppFile, BackgroundJob
from overskill.services.deployment_service import DeploymentService
from overskill.services.job_service import JobService

from conftest import make_app, sized, write_file


def _run(db) -> bool:
    db.commit()
    processed = worker.run_once()
    db.expire_all()
    return processed


def _completed(returncode=0, stderr=""):
    return SimpleNamespace(returncode=returncode, stdout="", stderr=stderr)


@pytest.fixture()
def deployed(db, object_store):
    app = make_app(db)
    write_file(db, object_store, app.id, "index.html", "<h1>hi</h1>")
    return DeploymentService(db).deploy(app.id, "production")


@pytest.fixture()
def executor(monkeypatch):
    monkeypatch.setattr(settings, "deploy_command", "deployer --quiet")
    with patch("worker.subprocess.run") as run:
        run.return_value = _completed()
        yield run


class TestDeploymentJobs:

    def test_empty_queue(self, db):
        assert _run(db) is False

    def test_success_marks_deployment_and_app(self, db, deployed, executor):
        assert _run(db) is True

        deployment = db.get(AppDeployment, deployed.id)
        assert deployment.status == "success"
        app = db.get(App, deployed.app_id)
        assert app.deployment_status == "success"
        assert app.published_url == deployment.deployment_url

        job = db.query(BackgroundJob).filter_by(job_type="deployment").one()
        assert job.status == "completed"

        cmd = executor.call_args.args[0]
        assert cmd == [
            "deployer", "--quiet",
            "--app", str(deployed.app_id),
            "--environment", "production",
            "--deployment", str(deployed.id),
        ]
        assert executor.call_args.kwargs["timeout"] == settings.deploy_timeout_seconds

    def test_non_zero_exit_records_stderr_tail(self, db, deployed, executor):
        executor.return_value = _completed(returncode=1, stderr="x" * 5000 + "build broke")
        _run(db)

        deployment = db.get(AppDeployment, deployed.id)
        assert deployment.status == "failed"
        assert deployment.error_message.endswith("build broke")
        assert len(deployment.error_message) == worker.MAX_ERROR_CHARS
        # A failed build still completes the job
        assert db.query(BackgroundJob).filter_by(job_type="deployment").one().status == "completed"

    def test_non_zero_exit_without_stderr(self, db, deployed, executor):
        executor.return_value = _completed(returncode=3)
        _run(db)
        assert db.get(AppDeployment, deployed.id).error_message == "Exit code 3"

    def test_timeout_fails_deployment(self, db, deployed, executor):
        executor.side_effect = subprocess.TimeoutExpired(cmd="deployer", timeout=1)
        _run(db)

        deployment = db.get(AppDeployment, deployed.id)
        assert deployment.status == "failed"
        assert "timed out" in deployment.error_message

    def test_missing_executor_binary(self, db, deployed, executor):
        executor.side_effect = FileNotFoundError("deployer")
        _run(db)
        assert "Could not start" in db.get(AppDeployment, deployed.id).error_message

    def test_no_command_configured(self, db, deployed):
        with patch("worker.subprocess.run") as run:
            _run(db)
        run.assert_not_called()
        deployment = db.get(AppDeployment, deployed.id)
        assert deployment.status == "failed"
        assert "DEPLOY_COMMAND" in deployment.error_message

    def test_outcome_already_reported(self, db, deployed, executor):
        DeploymentService(db).mark_outcome(deployed.id, "success")
        _run(db)

        executor.assert_not_called()
        assert db.get(AppDeployment, deployed.id).status == "success"
        assert db.query(BackgroundJob).filter_by(job_type="deployment").one().status == "completed"

    def test_rollback_job_runs_executor(self, db, deployed, executor):
        _run(db)
        rollback = DeploymentService(db).rollback(deployed.app_id, deployed.id)
        _run(db)

        assert db.get(AppDeployment, rollback.id).status == "success"
        assert executor.call_count == 2


class TestTierMigrationJobs:

    @pytest.fixture(autouse=True)
    def _store(self, object_store, tiering_on):
        with patch("worker.get_object_store", return_value=object_store):
            yield

    def test_promotes_file(self, db, object_store):
        app = make_app(db)
        write_file(db, object_store, app.id, "app.js", sized(5000))
        _run(db)

        file = db.query(AppFile).filter_by(app_id=app.id, path="app.js").one()
        assert file.storage_location == "hybrid"
        assert file.sync_status == "synced"
        assert file.object_key in object_store.objects
        assert db.query(BackgroundJob).filter_by(job_type="tier_migration").one().status == "completed"

    def test_transient_failure_is_retried_once(self, db, object_store):
        object_store.fail_put = True
        app = make_app(db)
        write_file(db, object_store, app.id, "app.js", sized(5000))

        _run(db)
        job = db.query(BackgroundJob).filter_by(job_type="tier_migration").one()
        assert job.status == "queued"
        assert job.retry_count == 1
        file = db.query(AppFile).filter_by(app_id=app.id, path="app.js").one()
        assert file.sync_status == "failed"
        assert file.storage_location == "inline"

        _run(db)
        job = db.query(BackgroundJob).filter_by(job_type="tier_migration").one()
        assert job.status == "failed"

    def test_invalid_target_is_not_retried(self, db):
        job = JobService(db).enqueue("tier_migration", "snapshot_bundle", 1, payload={"target_tier": "hybrid"})
        _run(db)

        job = db.get(BackgroundJob, job.id)
        assert job.status == "failed"
        assert job.retry_count == 1
        assert "Unknown migration target type" in job.error_message


class TestUnknownJobs:

    def test_unknown_type_fails_permanently(self, db):
        job = JobService(db).enqueue("reindex", "file", 1)
        _run(db)
        job = db.get(BackgroundJob, job.id)
        assert job.status == "failed"
        assert "Unknown job type" in job.error_message
