"""Live application file model."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base
from .tiered import TieredContentMixin, tier_constraints


class AppFile(Base, TieredContentMixin):
    """One named file of an app. Content may live inline, in R2, or both."""

    __tablename__ = "app_files"
    __table_args__ = (
        UniqueConstraint("app_id", "path", name="uq_app_files_app_path"),
        Index("ix_app_files_storage_location", "storage_location"),
        *tier_constraints("app_files"),
    )

    id = Column(Integer, primary_key=True)
    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    path = Column(String(500), nullable=False)
    file_type = Column(String(50), nullable=False, default="text")

    # Outcome of the last background tier migration: synced, failed
    sync_status = Column(String(20), nullable=True)
    sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    app = relationship("App", back_populates="files")
