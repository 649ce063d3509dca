from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ActivityLogEntry(BaseModel):
    id: UUID
    school_id: Optional[UUID] = None
    entity_type: str
    entity_id: UUID
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    performed_by: Optional[UUID] = None
    performed_by_role: Optional[str] = None
    remarks: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class LogPagination(BaseModel):
    """Offset pagination: `pages` is the page count at the requested `limit`."""

    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    skip: int = Field(..., ge=0)
    pages: int = Field(..., ge=0)


class ActivityLogPage(BaseModel):
    logs: List[ActivityLogEntry] = Field(default_factory=list)
    pagination: LogPagination
