"""Tests for migration discovery and schema baselining."""

from overskill.core.migrator import _MIGRATION_CHECKS, _detect_applied_migrations, _discover_migration_files
from overskill.database import engine


class TestMigrationFiles:

    def test_every_migration_can_be_baselined(self):
        migrations = _discover_migration_files()
        assert migrations
        assert {m.version for m in migrations} <= set(_MIGRATION_CHECKS)

    def test_active_deployment_index_per_dialect(self):
        found = sorted((m.version, m.name, m.dialect) for m in _discover_migration_files())
        assert found == [
            ("001", "active_deployment_index_postgres", "postgresql"),
            ("001", "active_deployment_index_sqlite", "sqlite"),
        ]


class TestBaseline:

    def test_bootstrapped_schema_counts_as_migrated(self):
        assert _detect_applied_migrations(engine, _discover_migration_files()) == {"001"}
