"""Columns shared by every record whose bytes may be tiered to the object store."""

from sqlalchemy import CheckConstraint, Column, Integer, String, Text


STORAGE_LOCATIONS = ("inline", "object_store", "hybrid")


class TieredContentMixin:
    """Content columns for files, version manifests and version files.

    At least one of ``content`` / ``object_key`` is always populated.
    ``content_hash`` and ``size_bytes`` describe the logical content and
    are kept current on every write, whichever tier holds the bytes.
    """

    content = Column(Text, nullable=True)
    object_key = Column(String(1024), nullable=True, unique=True)
    storage_location = Column(String(20), nullable=False, default="inline")
    content_hash = Column(String(64), nullable=False)  # SHA-256 hex
    size_bytes = Column(Integer, nullable=False, default=0)


def tier_constraints(table: str) -> tuple:
    """CHECK constraints enforcing the tier invariant for one table."""
    locations = ", ".join(f"'{loc}'" for loc in STORAGE_LOCATIONS)
    return (
        CheckConstraint(
            "content IS NOT NULL OR object_key IS NOT NULL",
            name=f"ck_{table}_content_present",
        ),
        CheckConstraint(
            f"storage_location IN ({locations})",
            name=f"ck_{table}_storage_location",
        ),
    )
