"""Tests for TieringService: background promotion jobs and admin sweeps."""

import pytest

from overskill.database import SessionLocal
from overskill.exceptions import MigrationError, ObjectStoreError, ValidationError
from overskill.models import AppFile, AppVersion, AppVersionFile, BackgroundJob
from overskill.schemas.storage import BatchResult, MigrationPlan
from overskill.services.content_store import ContentStoreService
from overskill.services.job_service import JobService
from overskill.services.storage_analytics_service import StorageAnalyticsService
from overskill.services.tiering_service import TieringService, strategy_min_bytes
from overskill.storage import StorageTier, sha256_hex

from conftest import make_app, sized, write_file


def _file(db, app_id, path):
    return db.query(AppFile).filter_by(app_id=app_id, path=path).one()


def _jobs(db):
    return db.query(BackgroundJob).filter_by(job_type="tier_migration").all()


@pytest.fixture()
def demo_app(db):
    return make_app(db)


class TestSchedulePromotion:
    """Writes stay inline; promotion is requested only when tiering applies."""

    def test_no_job_when_tiering_disabled(self, db, demo_app, object_store):
        result = write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        assert result.scheduled_jobs == []
        assert _jobs(db) == []

    def test_no_job_for_small_file(self, db, demo_app, object_store, tiering_on):
        result = write_file(db, object_store, demo_app.id, "small.js", sized(1024))
        assert result.scheduled_jobs == []

    def test_large_file_write_returns_inline_and_enqueues(self, db, demo_app, object_store, tiering_on):
        result = write_file(db, object_store, demo_app.id, "app.js", sized(5000))

        assert result.files[0].storage_location == "inline"
        assert object_store.put_calls == 0
        jobs = _jobs(db)
        assert len(jobs) == 1
        assert jobs[0].target_type == "file"
        assert jobs[0].payload["target_tier"] == "hybrid"
        assert result.scheduled_jobs == [jobs[0].id]

    def test_rewrite_before_processing_reuses_queued_job(self, db, demo_app, object_store, tiering_on):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        write_file(db, object_store, demo_app.id, "app.js", sized(20000, "b"))

        jobs = _jobs(db)
        assert len(jobs) == 1
        assert jobs[0].payload["target_tier"] == "object_store"

    def test_app_opt_out_skips_promotion(self, db, object_store, tiering_on):
        app = make_app(db, name="Inline Only", r2_storage_enabled=False)
        result = write_file(db, object_store, app.id, "app.js", sized(5000))
        assert result.scheduled_jobs == []


class TestRunMigrationJob:

    def test_promotes_latest_content(self, db, demo_app, object_store, tiering_on):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        write_file(db, object_store, demo_app.id, "app.js", sized(6000, "c"))
        job = _jobs(db)[0]

        outcome = TieringService(db, object_store).run_migration_job(job)

        record = _file(db, demo_app.id, "app.js")
        assert outcome["skipped"] is False
        assert record.storage_location == "hybrid"
        assert record.sync_status == "synced"
        assert object_store.objects[record.object_key] == sized(6000, "c").encode()

    def test_failure_records_sync_error_and_keeps_inline(self, db, demo_app, object_store, tiering_on):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        job = _jobs(db)[0]
        object_store.fail_put = True

        with pytest.raises(MigrationError):
            TieringService(db, object_store).run_migration_job(job)

        record = _file(db, demo_app.id, "app.js")
        db.refresh(record)
        assert record.storage_location == "inline"
        assert record.content == sized(5000)
        assert record.sync_status == "failed"
        assert "upload verification failed" in record.sync_error

    def test_deleted_target_is_skipped(self, db, demo_app, object_store, tiering_on):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        job = _jobs(db)[0]
        job.target_id = 999999
        db.commit()

        outcome = TieringService(db, object_store).run_migration_job(job)
        assert outcome == {"skipped": True, "reason": "target deleted"}

    def test_disabled_tiering_is_skipped(self, db, demo_app, object_store, tiering_on, monkeypatch):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        job = _jobs(db)[0]
        from overskill.core.config import settings
        monkeypatch.setattr(settings, "r2_storage_enabled", False)

        outcome = TieringService(db, object_store).run_migration_job(job)
        assert outcome["skipped"] is True
        assert _file(db, demo_app.id, "app.js").storage_location == "inline"

    def test_rerun_after_success_is_noop(self, db, demo_app, object_store, tiering_on):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        job = _jobs(db)[0]
        service = TieringService(db, object_store)
        service.run_migration_job(job)
        puts = object_store.put_calls

        service.run_migration_job(job)
        assert object_store.put_calls == puts


class TestWritesDuringMigration:
    """An editor write racing a running promotion always wins."""

    def test_write_while_job_runs_gets_its_own_job(self, db, demo_app, object_store, tiering_on):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        running = JobService(db).claim_next("tier_migration")

        write_file(db, object_store, demo_app.id, "app.js", sized(20000, "b"))

        queued = [j for j in _jobs(db) if j.status == "queued"]
        assert len(queued) == 1
        assert queued[0].id != running.id
        assert queued[0].payload["content_hash"] == sha256_hex(sized(20000, "b"))
        assert queued[0].payload["target_tier"] == "object_store"

    def test_job_for_older_content_is_skipped(self, db, demo_app, object_store, tiering_on):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        job = _jobs(db)[0]
        job.payload = {"target_tier": "hybrid", "content_hash": "0" * 64}
        db.commit()

        outcome = TieringService(db, object_store).run_migration_job(job)

        assert outcome == {"skipped": True, "reason": "content changed"}
        assert object_store.put_calls == 0
        assert _file(db, demo_app.id, "app.js").storage_location == "inline"

    def test_migration_loaded_before_write_does_not_overwrite_it(self, db, demo_app, object_store, tiering_on):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        db.commit()

        worker_db = SessionLocal(expire_on_commit=False)
        try:
            job = JobService(worker_db).claim_next("tier_migration")
            worker_db.get(AppFile, job.target_id)
            worker_db.commit()

            write_file(db, object_store, demo_app.id, "app.js", sized(20000, "b"))
            db.commit()

            outcome = TieringService(worker_db, object_store).run_migration_job(job)
        finally:
            worker_db.close()

        assert outcome == {"skipped": True, "reason": "content changed"}
        db.expire_all()
        record = _file(db, demo_app.id, "app.js")
        assert record.storage_location == "inline"
        assert record.content_hash == sha256_hex(sized(20000, "b"))
        assert ContentStoreService(db, object_store).read(record) == sized(20000, "b")
        # the worker's upload of the old bytes is not left behind
        assert object_store.objects == {}

        follow_up = [j for j in _jobs(db) if j.status == "queued"][0]
        TieringService(db, object_store).run_migration_job(follow_up)
        record = _file(db, demo_app.id, "app.js")
        assert record.storage_location == "object_store"
        assert object_store.objects[record.object_key] == sized(20000, "b").encode()


class TestStrategies:

    def test_thresholds(self):
        assert strategy_min_bytes("conservative") == 1024
        assert strategy_min_bytes("aggressive") == 500
        assert strategy_min_bytes("large_only") == 10240
        assert strategy_min_bytes("all") == 0

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValidationError):
            strategy_min_bytes("everything")


class TestFileSweep:

    @pytest.fixture()
    def mixed_files(self, db, demo_app, object_store):
        write_file(db, object_store, demo_app.id, "tiny.txt", sized(100))
        write_file(db, object_store, demo_app.id, "mid.txt", sized(800))
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        write_file(db, object_store, demo_app.id, "bundle.js", sized(20000))
        return demo_app

    def test_dry_run_reports_without_changes(self, db, mixed_files, object_store):
        plan = TieringService(db, object_store).migrate_files(strategy="conservative", dry_run=True)

        assert isinstance(plan, MigrationPlan)
        assert plan.candidates == 2
        assert plan.total_bytes == 25000
        assert plan.breakdown.medium == 1
        assert plan.breakdown.large == 1
        assert plan.estimated_monthly_savings_usd > 0
        assert object_store.put_calls == 0
        assert all(f.storage_location == "inline" for f in db.query(AppFile).all())

    @pytest.mark.parametrize("strategy,expected", [
        ("aggressive", 3),
        ("large_only", 1),
        ("all", 4),
    ])
    def test_strategy_selects_candidates(self, db, mixed_files, object_store, strategy, expected):
        plan = TieringService(db, object_store).migrate_files(strategy=strategy, dry_run=True)
        assert plan.candidates == expected

    def test_sweep_moves_files_to_planned_tier(self, db, mixed_files, object_store):
        result = TieringService(db, object_store).migrate_files(strategy="conservative")

        assert result == BatchResult(total=2, succeeded=2, failed=0, errors=[])
        assert _file(db, mixed_files.id, "app.js").storage_location == "hybrid"
        assert _file(db, mixed_files.id, "bundle.js").storage_location == "object_store"
        assert _file(db, mixed_files.id, "tiny.txt").storage_location == "inline"

    def test_small_files_swept_to_hybrid_not_inline(self, db, mixed_files, object_store):
        TieringService(db, object_store).migrate_files(strategy="aggressive")
        assert _file(db, mixed_files.id, "mid.txt").storage_location == "hybrid"

    def test_one_failure_does_not_stop_the_batch(self, db, mixed_files, object_store):
        object_store.fail_put_paths.add("app.js")

        result = TieringService(db, object_store).migrate_files(strategy="conservative")

        assert result.total == 2
        assert result.succeeded == 1
        assert result.failed == 1
        assert "file" in result.errors[0].item
        failed = _file(db, mixed_files.id, "app.js")
        assert failed.storage_location == "inline"
        assert failed.sync_status == "failed"
        assert _file(db, mixed_files.id, "bundle.js").storage_location == "object_store"

    def test_restricted_to_app_ids(self, db, mixed_files, object_store):
        other = make_app(db, name="Other")
        write_file(db, object_store, other.id, "big.js", sized(20000))

        result = TieringService(db, object_store).migrate_files(app_ids=[other.id], strategy="conservative")
        assert result.total == 1
        assert _file(db, mixed_files.id, "bundle.js").storage_location == "inline"

    def test_requires_object_store(self, db, mixed_files):
        with pytest.raises(ObjectStoreError):
            TieringService(db, None).migrate_files(strategy="conservative")


class TestVersionSweeps:

    def test_migrate_versions_above_threshold(self, db, demo_app, object_store):
        write_file(db, object_store, demo_app.id, "a.txt", "small")
        write_file(db, object_store, demo_app.id, "bundle.js", sized(20000))

        result = TieringService(db, object_store).migrate_versions()

        # Only the second snapshot carries the 20KB file
        assert result.total == 1
        versions = db.query(AppVersion).order_by(AppVersion.id).all()
        assert versions[0].storage_location == "inline"
        assert versions[1].storage_location == "object_store"

    def test_migrate_versions_custom_threshold(self, db, demo_app, object_store):
        write_file(db, object_store, demo_app.id, "a.txt", "small")
        plan = TieringService(db, object_store).migrate_versions(min_snapshot_bytes=1, dry_run=True)
        assert plan.candidates == 1

    def test_migrate_version_files(self, db, demo_app, object_store):
        write_file(db, object_store, demo_app.id, "bundle.js", sized(20000))

        result = TieringService(db, object_store).migrate_version_files()

        assert result.succeeded == 1
        version_file = db.query(AppVersionFile).one()
        assert version_file.storage_location == "object_store"
        assert version_file.object_key.startswith(f"apps/{demo_app.id}/versions/{version_file.app_version_id}/")


class TestRollbackAndCleanup:

    def test_rollback_to_inline_restores_every_tier(self, db, demo_app, object_store):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        write_file(db, object_store, demo_app.id, "bundle.js", sized(20000))
        service = TieringService(db, object_store)
        service.migrate_files(strategy="conservative")
        service.migrate_versions(min_snapshot_bytes=1)

        plan = service.rollback_to_inline(dry_run=True)
        assert plan.candidates == 4
        assert plan.estimated_monthly_savings_usd < 0

        result = service.rollback_to_inline()
        assert result.failed == 0
        for model in (AppFile, AppVersion):
            assert all(r.storage_location == "inline" for r in db.query(model).all())
        assert _file(db, demo_app.id, "bundle.js").content == sized(20000)

    def test_rollback_works_without_network_for_hybrid(self, db, demo_app, object_store):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        service = TieringService(db, object_store)
        service.migrate_files(strategy="conservative")
        object_store.fail_get = True

        result = service.rollback_to_inline()
        assert result.failed == 0
        assert _file(db, demo_app.id, "app.js").storage_location == "inline"

    def test_cleanup_hybrid_drops_inline_copy(self, db, demo_app, object_store):
        write_file(db, object_store, demo_app.id, "app.js", sized(5000))
        service = TieringService(db, object_store)
        service.migrate_files(strategy="conservative")

        result = service.cleanup_hybrid()
        assert result.succeeded == 1
        record = _file(db, demo_app.id, "app.js")
        assert record.storage_location == "object_store"
        assert record.content is None


class TestStorageReport:

    def test_counts_bytes_per_tier(self, db, demo_app, object_store):
        write_file(db, object_store, demo_app.id, "tiny.txt", sized(100))
        write_file(db, object_store, demo_app.id, "bundle.js", sized(20000))
        TieringService(db, object_store).migrate_files(strategy="conservative")

        report = StorageAnalyticsService(db).report()

        assert report.files["inline"].count == 1
        assert report.files["inline"].bytes == 100
        assert report.files["object_store"].count == 1
        assert report.files["object_store"].bytes == 20000
        assert report.files["hybrid"].count == 0
        assert report.versions["inline"].count == 2
        assert 0 < report.migration_percentage < 100
        cost = report.estimated_monthly_cost_usd
        assert cost["total"] < cost["all_database_baseline"]
