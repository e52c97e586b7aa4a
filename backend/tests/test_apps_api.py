"""Tests for the /api/apps endpoints."""

from overskill.models import App, AppFile


class TestApps:

    def test_create_assigns_shard_and_slug(self, client):
        resp = client.post("/api/apps", json={"name": "My Todo App!"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["slug"] == "my-todo-app"
        assert len(data["obfuscated_id"]) == 8
        assert data["database_shard_id"] is not None
        assert data["r2_storage_enabled"] is True

    def test_explicit_slug(self, client):
        resp = client.post("/api/apps", json={"name": "Todo", "slug": "todo-v2"})
        assert resp.json()["slug"] == "todo-v2"

    def test_invalid_slug_rejected(self, client):
        resp = client.post("/api/apps", json={"name": "Todo", "slug": "-bad slug-"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"

    def test_missing_name_is_422(self, client):
        resp = client.post("/api/apps", json={})
        assert resp.status_code == 422

    def test_get_and_list(self, client):
        app_id = client.post("/api/apps", json={"name": "One"}).json()["id"]
        client.post("/api/apps", json={"name": "Two"})

        assert client.get(f"/api/apps/{app_id}").json()["name"] == "One"
        assert len(client.get("/api/apps").json()) == 2

    def test_get_missing_app(self, client):
        resp = client.get("/api/apps/999999")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "APP_NOT_FOUND"
        assert "message" in body

    def test_delete_removes_files_and_objects(self, client, db, object_store):
        app_id = client.post("/api/apps", json={"name": "Gone"}).json()["id"]
        file_id = client.put(
            f"/api/apps/{app_id}/files", json={"path": "app.js", "content": "x" * 5000}
        ).json()["files"][0]["id"]
        client.post(f"/api/apps/{app_id}/files/{file_id}/migrate", json={"target_tier": "object_store"})
        key = next(iter(object_store.objects))

        resp = client.delete(f"/api/apps/{app_id}")
        assert resp.status_code == 204
        db.expire_all()
        assert db.get(App, app_id) is None
        assert db.query(AppFile).filter_by(app_id=app_id).count() == 0
        assert key in object_store.deleted
        assert client.get(f"/api/apps/{app_id}").status_code == 404
