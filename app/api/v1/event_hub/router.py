from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_school_admin, require_student
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.schemas import ApiResponse
from app.core.timeutils import utcnow
from app.db.session import get_db

from .schemas import HubEventPage, MyRequestsResponse, PastEventPage
from . import service

router = APIRouter(prefix="/api/v1", tags=["event-hub"])

SortKey = Literal["date", "title", "created_at"]


def _page_size(page_size: Optional[int]) -> int:
    return min(page_size or settings.hub_page_size, settings.max_page_size)


@router.get("/events/hub/available", response_model=HubEventPage)
async def available_events(
    search: Optional[str] = Query(None, max_length=200),
    sort: SortKey = Query("date"),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, alias="limit", ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> HubEventPage:
    """Upcoming events the student is eligible for, with their request status on each."""
    return await service.available_events(
        db,
        current_user,
        utcnow(),
        search=search,
        sort=sort,
        page=page,
        page_size=_page_size(page_size),
        filling_threshold=settings.filling_threshold,
    )


@router.get("/events/hub/my-requests", response_model=MyRequestsResponse)
async def my_requests(
    search: Optional[str] = Query(None, max_length=200),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> MyRequestsResponse:
    return await service.my_requests(
        db,
        current_user,
        utcnow(),
        search=search,
        filling_threshold=settings.filling_threshold,
    )


@router.get("/events/hub/past", response_model=PastEventPage)
async def past_events(
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, alias="limit", ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> PastEventPage:
    """Events already held where the student was approved or enrolled."""
    return await service.past_events(
        db,
        current_user,
        utcnow(),
        search=search,
        page=page,
        page_size=_page_size(page_size),
    )


@router.get("/student/eligible-events", response_model=ApiResponse)
async def eligible_events(
    search: Optional[str] = Query(None, max_length=200),
    sort: SortKey = Query("date"),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, alias="limit", ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> ApiResponse:
    result = await service.eligible_events(
        db,
        current_user,
        utcnow(),
        search=search,
        sort=sort,
        page=page,
        page_size=_page_size(page_size),
        filling_threshold=settings.filling_threshold,
    )
    return ApiResponse(message=f"Found {result.pagination.total_items} eligible event(s)", data=result)


@router.get("/school/event-capacity", response_model=ApiResponse)
async def school_event_capacity(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_school_admin),
) -> ApiResponse:
    """Per-school seat usage for non-archived global events and the admin's own events."""
    rows = await service.school_event_capacity(db, current_user, filling_threshold=settings.filling_threshold)
    return ApiResponse(message="Event capacity data fetched", data=rows)
