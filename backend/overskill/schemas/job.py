"""Background job schemas."""

from pydantic import BaseModel
from datetime import datetime
from typing import Any, Dict, Optional


class JobResponse(BaseModel):
    """Background job state."""
    id: str
    job_type: str
    target_type: str
    target_id: int
    payload: Optional[Dict[str, Any]] = None
    status: str
    error_message: Optional[str] = None
    retry_count: int
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
