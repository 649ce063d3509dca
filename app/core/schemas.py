from typing import Any, Optional

from pydantic import BaseModel, Field


class ApiResponse(BaseModel):
    """Uniform envelope for student-facing routes: success flag, message and payload."""

    success: bool = True
    message: str
    data: Optional[Any] = None


class PageInfo(BaseModel):
    """Pagination block returned with hub listings."""

    current: int = Field(..., ge=1, description="Current page number")
    page_size: int = Field(..., ge=1)
    total_items: int = Field(..., ge=0)
    total: int = Field(..., ge=0, description="Total number of pages")
    has_more: bool
