"""Background job model for tier migrations and deployment execution."""

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.sql import func
from ..database import Base


class BackgroundJob(Base):
    """
    Work handed from the request path to the polling worker.

    job_type: tier_migration (target_type file/version/version_file)
              or deployment (target_type deployment).
    Status transitions: queued -> running -> completed | failed
    Failed jobs below the retry limit go back to queued.
    """

    __tablename__ = "background_jobs"
    __table_args__ = (
        Index("ix_background_jobs_status", "status"),
        Index("ix_background_jobs_target", "target_type", "target_id"),
    )

    id = Column(String(50), primary_key=True)  # UUID
    job_type = Column(String(30), nullable=False)
    target_type = Column(String(30), nullable=False)
    target_id = Column(Integer, nullable=False)
    payload = Column(JSON, default=dict)

    status = Column(String(20), nullable=False, default="queued")
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
