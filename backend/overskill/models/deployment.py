"""Deployment log model."""

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text,
    and_, false,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base


ENVIRONMENTS = ("preview", "staging", "production")
DEPLOYMENT_STATUSES = ("pending", "success", "failed")


class AppDeployment(Base):
    """
    One deployment attempt of an app to one environment.

    Rows are append-only. The only mutations are the outcome recorded on a
    pending row and the superseded marker set when a newer deploy for the
    same environment replaces it.
    """

    __tablename__ = "app_deployments"
    __table_args__ = (
        Index("ix_app_deployments_app_env", "app_id", "environment"),
        CheckConstraint(
            "environment IN ('preview', 'staging', 'production')",
            name="ck_app_deployments_environment",
        ),
        CheckConstraint(
            "status IN ('pending', 'success', 'failed')",
            name="ck_app_deployments_status",
        ),
    )

    id = Column(Integer, primary_key=True)
    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    environment = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="pending")

    is_rollback = Column(Boolean, nullable=False, default=False)
    rollback_of_id = Column(Integer, ForeignKey("app_deployments.id", ondelete="SET NULL"), nullable=True)

    superseded_at = Column(DateTime(timezone=True), nullable=True)
    superseded_by_id = Column(Integer, ForeignKey("app_deployments.id", ondelete="SET NULL"), nullable=True)

    deployment_url = Column(Text, nullable=True)
    commit_sha = Column(String(64), nullable=True)
    deployed_version = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    deployment_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    app = relationship("App", back_populates="deployments")
    rollback_of = relationship("AppDeployment", foreign_keys=[rollback_of_id], remote_side=[id])

    @property
    def can_rollback(self) -> bool:
        """Original (non-rollback) deployments are valid rollback targets."""
        return not self.is_rollback


# At most one active deployment per (app, environment).
_ACTIVE = and_(AppDeployment.is_rollback == false(), AppDeployment.superseded_at.is_(None))
Index(
    "uq_app_deployments_active",
    AppDeployment.app_id,
    AppDeployment.environment,
    unique=True,
    postgresql_where=_ACTIVE,
    sqlite_where=_ACTIVE,
)
