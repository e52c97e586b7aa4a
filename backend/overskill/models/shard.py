"""Database shard model."""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from ..database import Base


class DatabaseShard(Base):
    """
    A tenant-data shard that apps are assigned to once, at creation.

    Status values: available, at_capacity, maintenance.
    """

    __tablename__ = "database_shards"

    id = Column(Integer, primary_key=True)
    name = Column(String(50), nullable=False, unique=True)  # shard-001
    shard_number = Column(Integer, nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="available")
    app_count = Column(Integer, nullable=False, default=0)
    capacity = Column(Integer, nullable=False, default=10000)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
