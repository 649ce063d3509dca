from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_admin, require_student
from app.auth.schemas import CurrentUser
from app.core.schemas import ApiResponse
from app.db.session import get_db

from . import coordinator, service
from .schemas import (
    BatchDecisionRequest,
    BatchDecisionResponse,
    BatchDecisionResult,
    BulkRejectRequest,
    EventManageResponse,
    ManualAddRequest,
    ManualAddResponse,
    ParticipationRequestListItem,
    ParticipationRequestResponse,
    PendingReviewResponse,
    RemoveStudentResponse,
)

router = APIRouter(prefix="/api/v1", tags=["participation"])


def _summary(results: dict) -> str:
    parts = []
    if results.get("approved"):
        parts.append(f"{len(results['approved'])} approved")
    if results.get("rejected"):
        parts.append(f"{len(results['rejected'])} rejected")
    if results.get("failed"):
        parts.append(f"{len(results['failed'])} failed")
    return ", ".join(parts) or "Nothing to process"


# ----- Student self-service -----

@router.post("/events/{event_id}/participate", response_model=ApiResponse)
async def request_participation(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> ApiResponse:
    """Student asks to join an event. Creates a PENDING request."""
    request = await coordinator.request_participation(db, event_id, current_user)
    return ApiResponse(
        message="Participation request created",
        data=ParticipationRequestResponse.model_validate(request),
    )


@router.get("/events/{event_id}/participate", response_model=ApiResponse)
async def get_participation_status(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> ApiResponse:
    request = await service.get_my_status(db, event_id, current_user)
    if request is None:
        return ApiResponse(message="No participation request for this event", data=None)
    return ApiResponse(
        message="Participation status fetched",
        data=ParticipationRequestResponse.model_validate(request),
    )


@router.delete("/events/{event_id}/participate", response_model=ApiResponse)
async def withdraw_pending_request(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> ApiResponse:
    """Withdraw the student's own PENDING request."""
    request = await coordinator.withdraw(db, event_id, current_user, pending_only=True)
    return ApiResponse(
        message="Participation request withdrawn",
        data=ParticipationRequestResponse.model_validate(request),
    )


@router.delete("/events/{event_id}/withdraw", response_model=ApiResponse)
async def withdraw_from_event(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> ApiResponse:
    """Withdraw from any active state; frees the seat when the student held one."""
    request = await coordinator.withdraw(db, event_id, current_user)
    return ApiResponse(
        message="Successfully withdrawn from event",
        data=ParticipationRequestResponse.model_validate(request),
    )


# ----- Admin review -----

@router.get("/events/{event_id}/approve", response_model=PendingReviewResponse)
async def list_pending_requests(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> PendingReviewResponse:
    """Pending requests and capacity summary for admin review."""
    return await service.review_pending(db, event_id, current_user)


@router.get("/events/{event_id}/manage", response_model=EventManageResponse)
async def manage_event(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> EventManageResponse:
    """Every request of the event by status, with capacity info and the per-school breakdown."""
    return await service.manage_view(db, event_id, current_user)


@router.put("/events/{event_id}/approve", response_model=BatchDecisionResponse)
async def decide_requests(
    event_id: UUID,
    payload: BatchDecisionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> BatchDecisionResponse:
    """Batch approve/reject. Per-item failures are reported in results.failed."""
    results = await coordinator.decide_requests(
        db,
        event_id,
        payload.request_ids,
        payload.action.value,
        current_user,
        rejection_reason=payload.rejection_reason,
    )
    return BatchDecisionResponse(message=_summary(results), results=BatchDecisionResult(**results))


@router.put("/events/{event_id}/manage/reject", response_model=BatchDecisionResponse)
async def bulk_reject(
    event_id: UUID,
    payload: BulkRejectRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> BatchDecisionResponse:
    results = await coordinator.bulk_reject(
        db,
        event_id,
        current_user,
        reason=payload.reason,
        request_ids=payload.request_ids,
    )
    return BatchDecisionResponse(message=_summary(results), results=BatchDecisionResult(**results))


@router.post("/events/{event_id}/manage/student/add", response_model=ManualAddResponse)
async def add_students(
    event_id: UUID,
    payload: ManualAddRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ManualAddResponse:
    """Admin adds students directly as APPROVED, bypassing the student request."""
    results = await coordinator.add_students_manually(
        db,
        event_id,
        payload.student_ids,
        current_user,
        force=payload.force,
        notes=payload.notes,
    )
    return ManualAddResponse(
        message=f"Added {len(results['added'])} student(s), {len(results['failed'])} failed",
        added=results["added"],
        failed=results["failed"],
    )


@router.delete("/events/{event_id}/manage/student/{student_id}", response_model=RemoveStudentResponse)
async def remove_student(
    event_id: UUID,
    student_id: UUID,
    reason: Optional[str] = Query(None, max_length=2000),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> RemoveStudentResponse:
    request = await coordinator.remove_student(db, event_id, student_id, current_user, reason=reason)
    return RemoveStudentResponse(
        message="Student removed from event",
        request=ParticipationRequestResponse.model_validate(request) if request else None,
    )


# ----- Participation requests -----

@router.post("/participation-requests/{request_id}/enroll", response_model=ApiResponse)
async def enroll_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ApiResponse:
    """Final confirmation of an APPROVED request. Capacity is checked again."""
    request = await coordinator.enroll_request(db, request_id, current_user)
    return ApiResponse(
        message="Student enrolled successfully",
        data=ParticipationRequestResponse.model_validate(request),
    )


@router.get("/participation-requests", response_model=List[ParticipationRequestListItem])
async def list_participation_requests(
    status_filter: Optional[str] = Query(None, alias="status", description="PENDING, APPROVED, REJECTED, ENROLLED, WITHDRAWN"),
    event_id: Optional[UUID] = Query(None, alias="eventId"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> List[ParticipationRequestListItem]:
    return await service.list_participation_requests(
        db,
        current_user,
        status=status_filter,
        event_id=event_id,
    )
