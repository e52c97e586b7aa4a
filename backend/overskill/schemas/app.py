"""App schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class AppCreate(BaseModel):
    """Schema for creating an app."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, max_length=100)
    r2_storage_enabled: bool = True


class AppResponse(BaseModel):
    """Schema for app response."""
    id: int
    name: str
    slug: str
    obfuscated_id: str
    database_shard_id: Optional[int] = None
    r2_storage_enabled: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
