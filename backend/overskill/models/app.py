"""Application model."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base


class App(Base):
    """A generated application: owns its files, versions and deployments."""

    __tablename__ = "apps"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False)
    # Public identifier used in deployment hostnames
    obfuscated_id = Column(String(20), nullable=False, unique=True)

    # Assigned once at creation, never recomputed
    database_shard_id = Column(Integer, ForeignKey("database_shards.id"), nullable=True)

    # Per-app opt-out of object-store tiering
    r2_storage_enabled = Column(Boolean, nullable=False, default=True)

    # Current deployment status, one group of fields per environment.
    # Updated only when a deployment outcome is recorded.
    deployment_status = Column(String(20), nullable=True)
    published_url = Column(Text, nullable=True)
    deployed_at = Column(DateTime(timezone=True), nullable=True)
    deployed_version = Column(String(50), nullable=True)

    staging_deployment_status = Column(String(20), nullable=True)
    staging_url = Column(Text, nullable=True)
    staging_deployed_at = Column(DateTime(timezone=True), nullable=True)
    staging_version = Column(String(50), nullable=True)

    preview_deployment_status = Column(String(20), nullable=True)
    preview_url = Column(Text, nullable=True)
    preview_deployed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    shard = relationship("DatabaseShard")
    files = relationship(
        "AppFile", back_populates="app", cascade="all, delete-orphan", passive_deletes=True
    )
    versions = relationship(
        "AppVersion", back_populates="app", cascade="all, delete-orphan", passive_deletes=True
    )
    deployments = relationship(
        "AppDeployment", back_populates="app", cascade="all, delete-orphan", passive_deletes=True
    )
