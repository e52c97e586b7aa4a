"""Tests for the /api/jobs endpoints."""

from overskill.services.job_service import JobService


class TestJobs:

    def test_list_and_filter(self, client, db):
        service = JobService(db)
        migration = service.enqueue("tier_migration", "file", 1, payload={"target_tier": "hybrid"})
        service.enqueue("deployment", "deployment", 2)
        service.fail(migration.id, "boom", retryable=False)

        assert len(client.get("/api/jobs").json()) == 2
        failed = client.get("/api/jobs", params={"status": "failed"}).json()
        assert [j["id"] for j in failed] == [migration.id]
        assert failed[0]["error_message"] == "boom"
        assert len(client.get("/api/jobs", params={"job_type": "deployment"}).json()) == 1

    def test_get_job(self, client, db):
        job = JobService(db).enqueue("tier_migration", "version", 7)
        resp = client.get(f"/api/jobs/{job.id}")
        assert resp.status_code == 200
        assert resp.json()["target_type"] == "version"
        assert resp.json()["status"] == "queued"

    def test_get_missing_job(self, client):
        resp = client.get("/api/jobs/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"] == "JOB_NOT_FOUND"

    def test_duplicate_enqueue_returns_pending_job(self, db):
        service = JobService(db)
        first = service.enqueue("tier_migration", "file", 3, payload={"target_tier": "hybrid"})
        second = service.enqueue("tier_migration", "file", 3, payload={"target_tier": "object_store"})
        assert first.id == second.id
        assert second.payload["target_tier"] == "object_store"
