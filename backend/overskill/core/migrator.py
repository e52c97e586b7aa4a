"""Schema bootstrap and tracked SQL migrations.

Fresh databases get every table from the SQLAlchemy models and have all
numbered migrations recorded as applied. Existing databases get the
pending files from ``backend/migrations`` applied in order and tracked in
``schema_migrations``.

Usage:
    from overskill.core.migrator import run_migrations, MigrationError

    try:
        result = run_migrations(engine, Base)
    except MigrationError as e:
        logger.critical(f"Migration failed: {e}")
        raise SystemExit(1)
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy import Engine, text, inspect
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """Raised when a schema migration fails to apply."""
    pass


@dataclass
class Migration:
    """A numbered SQL file in the migrations directory."""
    version: str        # "001"
    name: str           # "active_deployment_index_sqlite"
    file_path: Path
    dialect: Optional[str] = None  # None = runs everywhere

    def __lt__(self, other: "Migration") -> bool:
        return int(self.version) < int(other.version)


@dataclass
class MigrationResult:
    """Counts reported by run_migrations."""
    applied: int = 0
    skipped: int = 0
    baselined: int = 0


# "001_active_deployment_index_sqlite.sql"
_MIGRATION_PATTERN = re.compile(r"^(\d{3})_(.+)\.sql$")

# First-line marker: "-- dialect: postgresql"
_DIALECT_PATTERN = re.compile(r"^--\s*dialect:\s*(sqlite|postgresql)\s*$")

# Table whose presence marks an existing install.
_SENTINEL_TABLE = "apps"


def _get_migrations_dir() -> Path:
    return Path(__file__).parent.parent.parent / "migrations"


def _discover_migration_files() -> list[Migration]:
    """Scan the migrations directory, skipping rollback scripts."""
    migrations_dir = _get_migrations_dir()

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return []

    migrations = []
    for file_path in sorted(migrations_dir.glob("*.sql")):
        if "rollback" in file_path.name.lower():
            continue

        match = _MIGRATION_PATTERN.match(file_path.name)
        if not match:
            logger.debug(f"Skipping non-migration file: {file_path.name}")
            continue

        dialect = None
        first_line = file_path.read_text().split("\n", 1)[0]
        dialect_match = _DIALECT_PATTERN.match(first_line)
        if dialect_match:
            dialect = dialect_match.group(1)

        migrations.append(Migration(
            version=match.group(1),
            name=match.group(2),
            file_path=file_path,
            dialect=dialect,
        ))

    return sorted(migrations)


def _is_fresh_install(engine: Engine) -> bool:
    return _SENTINEL_TABLE not in inspect(engine).get_table_names()


def _get_schema_state(engine: Engine) -> dict:
    """Collect the table and index facts the migration checks look at."""
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())

    deployment_indexes = set()
    if "app_deployments" in tables:
        deployment_indexes = {idx["name"] for idx in inspector.get_indexes("app_deployments")}

    return {
        "tables": tables,
        "deployment_indexes": deployment_indexes,
    }


# What each migration changes, so an untracked but already-migrated
# schema can be baselined instead of re-applied.
_MIGRATION_CHECKS = {
    "001": lambda s: "uq_app_deployments_active" in s["deployment_indexes"],
}


def _detect_applied_migrations(engine: Engine, migrations: list[Migration]) -> set[str]:
    state = _get_schema_state(engine)
    if _SENTINEL_TABLE not in state["tables"]:
        return set()

    applied = set()
    for migration in migrations:
        check = _MIGRATION_CHECKS.get(migration.version)
        if check and check(state):
            applied.add(migration.version)
    return applied


def _schema_migrations_exists(engine: Engine) -> bool:
    return "schema_migrations" in inspect(engine).get_table_names()


def _ensure_migrations_table(engine: Engine) -> None:
    if _schema_migrations_exists(engine):
        return

    logger.info("Creating schema_migrations table")
    with engine.connect() as conn:
        conn.execute(text("""
            CREATE TABLE schema_migrations (
                version VARCHAR(10) PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """))
        conn.commit()


def _get_applied_versions(engine: Engine) -> set[str]:
    if not _schema_migrations_exists(engine):
        return set()

    with engine.connect() as conn:
        result = conn.execute(text("SELECT version FROM schema_migrations"))
        return {row[0] for row in result}


def _record_migration(engine: Engine, migration: Migration) -> None:
    with engine.connect() as conn:
        conn.execute(
            text("INSERT INTO schema_migrations (version, name) VALUES (:version, :name)"),
            {"version": migration.version, "name": migration.name}
        )
        conn.commit()


def _split_statements(sql_content: str) -> list[str]:
    """Split a migration file into statements. SQLite executes one at a time."""
    lines = [line for line in sql_content.splitlines() if not line.strip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


def _apply_migration(engine: Engine, migration: Migration) -> None:
    """Execute a migration in one transaction and record it.

    Raises MigrationError on failure.
    """
    statements = _split_statements(migration.file_path.read_text())

    with engine.connect() as conn:
        try:
            for statement in statements:
                conn.execute(text(statement))
            conn.commit()
        except SQLAlchemyError as e:
            conn.rollback()
            raise MigrationError(f"Failed to apply {migration.version}_{migration.name}: {e}") from e

    _record_migration(engine, migration)


def run_migrations(engine: Engine, base: type) -> MigrationResult:
    """Bring the schema up to date. Idempotent.

    Args:
        engine: SQLAlchemy engine
        base: declarative base, used for create_all on a fresh install

    Raises:
        MigrationError: If a migration fails to apply
    """
    logger.info("Starting migration check")

    dialect = engine.dialect.name
    all_migrations = _discover_migration_files()
    migrations = [m for m in all_migrations if m.dialect is None or m.dialect == dialect]
    if len(migrations) < len(all_migrations):
        logger.info(f"Skipped {len(all_migrations) - len(migrations)} migration(s) for other dialects")

    if _is_fresh_install(engine):
        logger.info("Fresh install detected - creating tables from models")
        base.metadata.create_all(bind=engine)
        _ensure_migrations_table(engine)
        for migration in migrations:
            _record_migration(engine, migration)
        logger.info(f"Baselined {len(migrations)} migrations")
        return MigrationResult(baselined=len(migrations))

    logger.info("Existing install detected")
    # New tables (e.g. background_jobs on an older install) are created;
    # create_all never alters existing ones.
    base.metadata.create_all(bind=engine)
    _ensure_migrations_table(engine)

    tracked_versions = _get_applied_versions(engine)
    detected_applied = _detect_applied_migrations(engine, migrations)

    newly_baselined = detected_applied - tracked_versions
    for migration in migrations:
        if migration.version in newly_baselined:
            _record_migration(engine, migration)
            logger.debug(f"Baselined migration {migration.version}: {migration.name}")

    applied_versions = tracked_versions | detected_applied
    pending = [m for m in migrations if m.version not in applied_versions]

    if not pending:
        if newly_baselined:
            logger.info(f"Baselined {len(newly_baselined)} migrations, no pending migrations")
            return MigrationResult(baselined=len(newly_baselined))
        logger.info("No pending migrations")
        return MigrationResult(skipped=len(migrations))

    logger.info(f"Found {len(pending)} pending migration(s)")
    for migration in pending:
        logger.info(f"Applying migration {migration.version}: {migration.name}")
        _apply_migration(engine, migration)

    logger.info(f"Applied {len(pending)} migration(s) successfully")
    return MigrationResult(applied=len(pending), baselined=len(newly_baselined))
