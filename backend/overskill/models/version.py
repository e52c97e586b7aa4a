"""Version snapshot models."""

from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base
from .tiered import TieredContentMixin, tier_constraints


VERSION_FILE_ACTIONS = ("created", "updated", "deleted", "restored")


class AppVersion(Base, TieredContentMixin):
    """
    Immutable snapshot of an app's full file set.

    The tiered ``content`` holds a JSON manifest
    ``[{path, content, file_type, content_hash}]``. Only its storage
    location may change after creation.
    """

    __tablename__ = "app_versions"
    __table_args__ = (
        UniqueConstraint("app_id", "version_number", name="uq_app_versions_app_number"),
        Index("ix_app_versions_created_at", "created_at"),
        *tier_constraints("app_versions"),
    )

    id = Column(Integer, primary_key=True)
    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    version_number = Column(String(50), nullable=False)  # dotted, e.g. 1.0.3
    display_name = Column(String(255), nullable=True)
    changelog = Column(Text, nullable=True)
    restored_from_id = Column(
        Integer, ForeignKey("app_versions.id", ondelete="SET NULL"), nullable=True
    )
    file_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    app = relationship("App", back_populates="versions")
    version_files = relationship(
        "AppVersionFile",
        back_populates="version",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AppVersionFile.path",
    )


class AppVersionFile(Base, TieredContentMixin):
    """A file captured by a version, tagged with what happened to it."""

    __tablename__ = "app_version_files"
    __table_args__ = (
        Index("ix_app_version_files_version_id", "app_version_id"),
        CheckConstraint(
            "action IN ('created', 'updated', 'deleted', 'restored')",
            name="ck_app_version_files_action",
        ),
        *tier_constraints("app_version_files"),
    )

    id = Column(Integer, primary_key=True)
    app_version_id = Column(
        Integer, ForeignKey("app_versions.id", ondelete="CASCADE"), nullable=False
    )
    # Weak reference: the live file may be edited or deleted later
    app_file_id = Column(Integer, ForeignKey("app_files.id", ondelete="SET NULL"), nullable=True)
    path = Column(String(500), nullable=False)
    action = Column(String(20), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    version = relationship("AppVersion", back_populates="version_files")
