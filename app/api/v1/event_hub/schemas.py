from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.schemas import PageInfo


class CapacityInfo(BaseModel):
    unlimited: bool
    total: Optional[int] = None
    filled: int
    available: Optional[int] = None
    percentage: int = 0


class HubEvent(BaseModel):
    """An eligible event as shown to a student, with their request status."""

    id: UUID
    school_id: Optional[UUID] = None
    title: str
    description: str
    date: datetime
    registration_deadline: Optional[datetime] = None
    eligible_grades: List[str] = Field(default_factory=list)
    max_participants: Optional[int] = None
    max_participants_per_school: Optional[int] = None
    user_status: Optional[str] = None
    request_id: Optional[UUID] = None
    can_request: bool
    capacity_info: CapacityInfo
    days_until_deadline: Optional[int] = None
    enrollment_status: str


class HubEventPage(BaseModel):
    events: List[HubEvent]
    pagination: PageInfo


class MyRequestItem(BaseModel):
    id: UUID
    event_id: UUID
    event_title: str
    event_date: datetime
    enrollment_status: str
    status: str
    requested_at: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    enrollment_confirmed_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None
    notes: Optional[str] = None


class MyRequestsResponse(BaseModel):
    """The student's requests grouped by status, newest first."""

    PENDING: List[MyRequestItem] = Field(default_factory=list)
    APPROVED: List[MyRequestItem] = Field(default_factory=list)
    ENROLLED: List[MyRequestItem] = Field(default_factory=list)
    REJECTED: List[MyRequestItem] = Field(default_factory=list)
    WITHDRAWN: List[MyRequestItem] = Field(default_factory=list)
    total: int = 0


class PastEventItem(BaseModel):
    id: UUID
    event_id: UUID
    event_title: str
    event_description: str
    event_date: datetime
    status: str
    enrolled_at: Optional[datetime] = None
    participant_count: int


class PastEventPage(BaseModel):
    events: List[PastEventItem]
    pagination: PageInfo


class SchoolCapacity(BaseModel):
    school_id: UUID
    school_name: Optional[str] = None
    enrolled: int
    max_capacity: Optional[int] = None
    percentage: int = 0
    status: str


class EligibleEvent(BaseModel):
    id: UUID
    title: str
    description: str
    date: datetime
    eligible_grades: List[str] = Field(default_factory=list)
    max_participants: Optional[int] = None
    total_enrolled: int
    enrollment_percentage: int
    enrollment_status: str
    max_participants_per_school: Optional[int] = None
    school_capacity: List[SchoolCapacity] = Field(default_factory=list)
    registration_deadline: Optional[datetime] = None
    deadline_passed: bool
    is_eligible: bool = True
    ineligibility_reason: Optional[str] = None
    user_request_status: Optional[str] = None
    user_request_id: Optional[UUID] = None


class EligibleEventPage(BaseModel):
    events: List[EligibleEvent]
    pagination: PageInfo


class OwnSchoolCapacity(BaseModel):
    enrolled: int
    pending: int
    available: Optional[int] = None


class EventCapacityRow(BaseModel):
    """Row of the school admin capacity dashboard."""

    id: UUID
    title: str
    description: str
    date: datetime
    status: str
    eligible_grades: List[str] = Field(default_factory=list)
    max_participants: Optional[int] = None
    max_participants_per_school: Optional[int] = None
    total_enrolled: int
    school_capacity: List[SchoolCapacity] = Field(default_factory=list)
    own_school: OwnSchoolCapacity
