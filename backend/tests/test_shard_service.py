"""Tests for ShardService: one-time shard assignment with capacity claims."""

from overskill.core.config import settings
from overskill.models import App, DatabaseShard
from overskill.services.shard_service import ShardService

from conftest import make_app


class TestAssignShard:

    def test_first_app_creates_first_shard(self, db):
        app = make_app(db)
        shard = db.get(DatabaseShard, app.database_shard_id)
        assert shard.name == "shard-001"
        assert shard.app_count == 1
        assert shard.status == "available"

    def test_apps_share_shard_until_full(self, db, monkeypatch):
        monkeypatch.setattr(settings, "apps_per_shard", 2)
        a = make_app(db, name="A")
        b = make_app(db, name="B")
        c = make_app(db, name="C")

        assert a.database_shard_id == b.database_shard_id
        assert c.database_shard_id != a.database_shard_id
        full = db.get(DatabaseShard, a.database_shard_id)
        db.refresh(full)
        assert full.status == "at_capacity"
        assert db.get(DatabaseShard, c.database_shard_id).name == "shard-002"

    def test_least_loaded_shard_preferred(self, db):
        db.add_all([
            DatabaseShard(name="shard-001", shard_number=1, status="available", app_count=5, capacity=10),
            DatabaseShard(name="shard-002", shard_number=2, status="available", app_count=1, capacity=10),
        ])
        db.commit()
        app = make_app(db)
        assert db.get(DatabaseShard, app.database_shard_id).name == "shard-002"

    def test_maintenance_shards_skipped(self, db):
        db.add(DatabaseShard(name="shard-001", shard_number=1, status="maintenance", app_count=0, capacity=10))
        db.commit()
        app = make_app(db)
        assert db.get(DatabaseShard, app.database_shard_id).name == "shard-002"

    def test_assignment_is_never_recomputed(self, db):
        app = make_app(db)
        original = app.database_shard_id
        shard = ShardService(db).assign_shard(app)
        db.commit()

        assert shard.id == original
        assert db.get(App, app.id).database_shard_id == original
        assert db.get(DatabaseShard, original).app_count == 1

    def test_list_shards_ordered(self, db, monkeypatch):
        monkeypatch.setattr(settings, "apps_per_shard", 1)
        make_app(db, name="A")
        make_app(db, name="B")
        assert [s.name for s in ShardService(db).list_shards()] == ["shard-001", "shard-002"]
