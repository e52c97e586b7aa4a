"""Tests for the /api/apps/{app_id}/versions endpoints."""

import pytest


@pytest.fixture()
def app_id(client):
    return client.post("/api/apps", json={"name": "Versions"}).json()["id"]


def _put(client, app_id, path, content):
    return client.put(f"/api/apps/{app_id}/files", json={"path": path, "content": content}).json()


class TestVersions:

    def test_list_newest_first(self, client, app_id):
        _put(client, app_id, "a.js", "one")
        _put(client, app_id, "a.js", "two")

        versions = client.get(f"/api/apps/{app_id}/versions").json()
        assert [v["version_number"] for v in versions] == ["1.0.1", "1.0.0"]

    def test_detail_includes_version_files(self, client, app_id):
        version_id = _put(client, app_id, "a.js", "one")["version"]["id"]

        resp = client.get(f"/api/apps/{app_id}/versions/{version_id}")
        assert resp.status_code == 200
        files = resp.json()["files"]
        assert [(f["path"], f["action"]) for f in files] == [("a.js", "created")]

    def test_version_of_other_app_is_404(self, client, app_id):
        other = client.post("/api/apps", json={"name": "Other"}).json()["id"]
        version_id = _put(client, other, "a.js", "x")["version"]["id"]
        resp = client.get(f"/api/apps/{app_id}/versions/{version_id}")
        assert resp.status_code == 404
        assert resp.json()["error"] == "VERSION_NOT_FOUND"

    def test_versions_404_for_unknown_app(self, client):
        assert client.get("/api/apps/999999/versions").status_code == 404


class TestDiff:

    def test_diff_between_versions(self, client, app_id):
        v1 = _put(client, app_id, "a.js", "line1\nline2")["version"]["id"]
        _put(client, app_id, "b.js", "new")
        v3 = _put(client, app_id, "a.js", "line1\nchanged\nline3")["version"]["id"]

        resp = client.get(f"/api/apps/{app_id}/versions/diff", params={"from_id": v1, "to_id": v3})
        assert resp.status_code == 200
        data = resp.json()
        assert data["from_version"] == "1.0.0"
        assert data["to_version"] == "1.0.2"
        by_path = {f["path"]: f for f in data["files"]}
        assert by_path["a.js"]["status"] == "updated"
        assert by_path["a.js"]["additions"] == 2
        assert by_path["a.js"]["deletions"] == 1
        assert by_path["b.js"]["status"] == "created"
        assert data["total_additions"] == 3

    def test_diff_requires_both_ids(self, client, app_id):
        assert client.get(f"/api/apps/{app_id}/versions/diff", params={"from_id": 1}).status_code == 422


class TestRestore:

    def test_restore_creates_new_version(self, client, app_id):
        v1 = _put(client, app_id, "a.js", "original")["version"]["id"]
        _put(client, app_id, "a.js", "edited")

        resp = client.post(f"/api/apps/{app_id}/versions/{v1}/restore")
        assert resp.status_code == 200
        data = resp.json()
        assert data["restored_count"] == 1
        assert data["failed_paths"] == []
        assert data["version"]["version_number"] == "1.0.2"
        assert data["version"]["restored_from_id"] == v1

        files = client.get(f"/api/apps/{app_id}/files").json()
        content = client.get(f"/api/apps/{app_id}/files/{files[0]['id']}").json()["content"]
        assert content == "original"

    def test_restore_unknown_version(self, client, app_id):
        assert client.post(f"/api/apps/{app_id}/versions/999999/restore").status_code == 404
