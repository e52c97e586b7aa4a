"""Tests for the /api/storage administration endpoints."""

import pytest


@pytest.fixture()
def app_id(client):
    return client.post("/api/apps", json={"name": "Storage"}).json()["id"]


def _put(client, app_id, path, content):
    return client.put(f"/api/apps/{app_id}/files", json={"path": path, "content": content}).json()


class TestMigrationSweep:

    def test_dry_run_plans_without_moving(self, client, app_id, object_store):
        _put(client, app_id, "small.js", "s" * 100)
        _put(client, app_id, "medium.js", "m" * 5000)
        _put(client, app_id, "large.js", "l" * 20000)

        resp = client.post("/api/storage/migrations", json={"kind": "files", "dry_run": True})
        assert resp.status_code == 200
        data = resp.json()
        assert data["dry_run"] is True
        assert data["result"] is None
        assert data["plan"]["candidates"] == 2
        assert data["plan"]["total_bytes"] == 25000
        assert object_store.put_calls == 0

    def test_run_promotes_by_size(self, client, app_id, object_store):
        _put(client, app_id, "medium.js", "m" * 5000)
        _put(client, app_id, "large.js", "l" * 20000)

        data = client.post("/api/storage/migrations", json={"kind": "files"}).json()
        assert data["result"] == {"total": 2, "succeeded": 2, "failed": 0, "errors": []}

        tiers = {f["path"]: f["storage_location"] for f in client.get(f"/api/apps/{app_id}/files").json()}
        assert tiers == {"medium.js": "hybrid", "large.js": "object_store"}

    def test_partial_failure_reported_per_item(self, client, app_id, object_store):
        _put(client, app_id, "medium.js", "m" * 5000)
        _put(client, app_id, "large.js", "l" * 20000)
        object_store.fail_put_paths = {"large.js"}

        result = client.post("/api/storage/migrations", json={"kind": "files"}).json()["result"]
        assert result["succeeded"] == 1
        assert result["failed"] == 1
        assert result["errors"][0]["item"].startswith("file ")

    def test_unknown_strategy_is_422(self, client):
        resp = client.post("/api/storage/migrations", json={"kind": "files", "strategy": "yolo"})
        assert resp.status_code == 422


class TestRollbackAndCleanup:

    def test_rollback_brings_content_inline(self, client, app_id, object_store):
        _put(client, app_id, "large.js", "l" * 20000)
        client.post("/api/storage/migrations", json={"kind": "files"})

        data = client.post("/api/storage/rollback", json={"app_ids": [app_id]}).json()
        assert data["result"]["failed"] == 0
        files = client.get(f"/api/apps/{app_id}/files").json()
        assert files[0]["storage_location"] == "inline"

    def test_cleanup_drops_inline_copies(self, client, app_id, object_store):
        _put(client, app_id, "medium.js", "m" * 5000)
        client.post("/api/storage/migrations", json={"kind": "files"})

        resp = client.post("/api/storage/cleanup", params={"app_ids": [app_id]})
        assert resp.status_code == 200
        assert resp.json()["succeeded"] == 1
        file = client.get(f"/api/apps/{app_id}/files").json()[0]
        assert file["storage_location"] == "object_store"
        content = client.get(f"/api/apps/{app_id}/files/{file['id']}").json()["content"]
        assert content == "m" * 5000


class TestReport:

    def test_report_counts_tiers(self, client, app_id, object_store):
        _put(client, app_id, "small.js", "s" * 100)
        _put(client, app_id, "large.js", "l" * 20000)
        client.post("/api/storage/migrations", json={"kind": "files"})

        report = client.get("/api/storage/report", params={"app_ids": [app_id]}).json()
        assert report["files"]["inline"] == {"count": 1, "bytes": 100}
        assert report["files"]["object_store"] == {"count": 1, "bytes": 20000}
        assert report["migration_percentage"] > 0
        assert set(report["estimated_monthly_cost_usd"]) >= {"database", "object_store", "total"}
