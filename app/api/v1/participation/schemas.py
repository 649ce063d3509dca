from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.core.enums import BatchAction


# ----- Participation request -----

class ParticipationRequestResponse(BaseModel):
    id: UUID
    student_id: UUID
    event_id: UUID
    school_id: UUID
    status: str
    requested_at: datetime
    approved_at: Optional[datetime] = None
    approved_by: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    enrollment_confirmed_at: Optional[datetime] = None
    student_notified_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None
    force_enrolled: bool = False
    validation_errors: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ParticipationRequestListItem(ParticipationRequestResponse):
    """Admin listing row: request plus who and what it is about."""

    student_name: Optional[str] = None
    student_grade: Optional[str] = None
    roll_number: Optional[str] = None
    school_name: Optional[str] = None
    event_title: Optional[str] = None


# ----- Admin batch decisions -----

class BatchDecisionRequest(BaseModel):
    """Body for PUT /events/{id}/approve."""

    request_ids: List[UUID] = Field(..., min_length=1, alias="requestIds")
    action: BatchAction
    rejection_reason: Optional[str] = Field(None, max_length=2000, alias="rejectionReason")

    class Config:
        populate_by_name = True


class FailedItem(BaseModel):
    request_id: UUID
    reason: str


class BatchDecisionResult(BaseModel):
    approved: List[UUID] = Field(default_factory=list)
    rejected: List[UUID] = Field(default_factory=list)
    failed: List[FailedItem] = Field(default_factory=list)


class BatchDecisionResponse(BaseModel):
    message: str
    results: BatchDecisionResult


class BulkRejectRequest(BaseModel):
    """Body for PUT /events/{id}/manage/reject. Without request ids every pending request in scope is rejected."""

    request_ids: Optional[List[UUID]] = Field(None, alias="requestIds")
    reason: str = Field(..., min_length=1, max_length=2000, alias="rejectionReason")

    class Config:
        populate_by_name = True


# ----- Manual add -----

class ManualAddRequest(BaseModel):
    student_ids: List[UUID] = Field(default_factory=list, alias="studentIds")
    student_id: Optional[UUID] = Field(None, alias="studentId")
    force: bool = Field(False, alias="forceEnroll", description="Accept capacity/eligibility failures")
    notes: Optional[str] = Field(None, max_length=2000)

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def collect_ids(self) -> "ManualAddRequest":
        if self.student_id and self.student_id not in self.student_ids:
            self.student_ids.append(self.student_id)
        if not self.student_ids:
            raise ValueError("studentIds must be a non-empty array")
        return self


class AddedItem(BaseModel):
    student_id: UUID
    request_id: UUID
    force_enrolled: bool = False
    validation_errors: List[str] = Field(default_factory=list)


class FailedStudentItem(BaseModel):
    student_id: UUID
    reason: str


class ManualAddResponse(BaseModel):
    message: str
    added: List[AddedItem] = Field(default_factory=list)
    failed: List[FailedStudentItem] = Field(default_factory=list)


class RemoveStudentResponse(BaseModel):
    message: str
    request: Optional[ParticipationRequestResponse] = None


# ----- Review -----

class CapacitySummary(BaseModel):
    total: Optional[int] = None
    filled: int = 0
    pending: int = 0
    available: Optional[int] = None
    percentage: int = 0


class PendingReviewResponse(BaseModel):
    """GET /events/{id}/approve: pending requests and capacity for admin review."""

    event_id: UUID
    event_title: str
    requests: List[ParticipationRequestListItem]
    capacity: CapacitySummary
    school_capacity: Optional[CapacitySummary] = None


# ----- Manage view -----

class ManageCapacityInfo(CapacitySummary):
    approved: int = 0
    rejected: int = 0


class SchoolBreakdown(BaseModel):
    school_id: UUID
    school_name: Optional[str] = None
    count: int
    limit: Optional[int] = None
    percentage: int = 0


class RequestsByStatus(BaseModel):
    PENDING: List[ParticipationRequestListItem] = Field(default_factory=list)
    APPROVED: List[ParticipationRequestListItem] = Field(default_factory=list)
    ENROLLED: List[ParticipationRequestListItem] = Field(default_factory=list)
    REJECTED: List[ParticipationRequestListItem] = Field(default_factory=list)
    WITHDRAWN: List[ParticipationRequestListItem] = Field(default_factory=list)


class EventManageResponse(BaseModel):
    """GET /events/{id}/manage: every request of the event by status, with capacity figures."""

    event_id: UUID
    event_title: str
    event_date: datetime
    status: str
    lifecycle_status: str
    requests: RequestsByStatus
    capacity_info: ManageCapacityInfo
    per_school_breakdown: List[SchoolBreakdown] = Field(default_factory=list)
