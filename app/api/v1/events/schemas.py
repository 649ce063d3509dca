from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.core.enums import LifecycleStatus
from app.core.timeutils import to_naive_utc


def schedule_problem(
    date: Optional[datetime],
    registration_deadline: Optional[datetime],
    max_participants: Optional[int],
    max_participants_per_school: Optional[int],
) -> Optional[str]:
    """First rule the dates and caps break, or None."""
    if registration_deadline and date and registration_deadline > date:
        return "Registration deadline must not be after the event date"
    if (
        max_participants is not None
        and max_participants_per_school is not None
        and max_participants_per_school > max_participants
    ):
        return "Per-school limit cannot exceed the event limit"
    return None


def clean_grades(grades: List[str]) -> List[str]:
    return list(dict.fromkeys(g.strip() for g in grades if g.strip()))


class EventCreate(BaseModel):
    """Create an event. Status is decided by the backend from the author's role unless DRAFT is asked for."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    date: datetime
    registration_deadline: Optional[datetime] = Field(None, alias="registrationDeadline")
    eligible_grades: List[str] = Field(default_factory=list, alias="eligibleGrades", description="Empty = all grades")
    max_participants: Optional[int] = Field(None, ge=1, alias="maxParticipants")
    max_participants_per_school: Optional[int] = Field(None, ge=1, alias="maxParticipantsPerSchool")
    status: Optional[Literal["DRAFT"]] = Field(None, description="Pass DRAFT to keep the event unpublished")

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def check_dates_and_caps(self) -> "EventCreate":
        self.date = to_naive_utc(self.date)
        self.registration_deadline = to_naive_utc(self.registration_deadline)
        problem = schedule_problem(
            self.date, self.registration_deadline, self.max_participants, self.max_participants_per_school
        )
        if problem:
            raise ValueError(problem)
        self.eligible_grades = clean_grades(self.eligible_grades)
        return self


class EventUpdate(BaseModel):
    """
    Partial edit. Omitted fields keep their value; registrationDeadline and both caps
    may be cleared with an explicit null. Cross-field rules are checked against the
    merged event by the service.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = Field(None, alias="registrationDeadline")
    eligible_grades: Optional[List[str]] = Field(None, alias="eligibleGrades")
    max_participants: Optional[int] = Field(None, ge=1, alias="maxParticipants")
    max_participants_per_school: Optional[int] = Field(None, ge=1, alias="maxParticipantsPerSchool")
    lifecycle_status: Optional[LifecycleStatus] = Field(None, alias="lifecycleStatus")

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def normalize(self) -> "EventUpdate":
        for name in ("title", "description", "date", "eligible_grades", "lifecycle_status"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        # Assigning marks a field as set; touch only what the client sent
        if self.date is not None:
            self.date = to_naive_utc(self.date)
        if self.registration_deadline is not None:
            self.registration_deadline = to_naive_utc(self.registration_deadline)
        if self.title is not None:
            self.title = self.title.strip()
        if self.eligible_grades is not None:
            self.eligible_grades = clean_grades(self.eligible_grades)
        return self


class EventStatusUpdate(BaseModel):
    status: Literal["PENDING", "APPROVED", "REJECTED"]
    remarks: Optional[str] = Field(None, max_length=2000)


class RosterEntry(BaseModel):
    school_id: UUID
    school_name: Optional[str] = None
    enrolled: int
    student_ids: List[UUID] = Field(default_factory=list)
    joined_at: datetime


class EventResponse(BaseModel):
    id: UUID
    school_id: Optional[UUID] = None
    title: str
    description: str
    date: datetime
    registration_deadline: Optional[datetime] = None
    eligible_grades: List[str] = Field(default_factory=list)
    max_participants: Optional[int] = None
    max_participants_per_school: Optional[int] = None
    status: str
    lifecycle_status: str = LifecycleStatus.ACTIVE.value
    created_by: UUID
    created_by_role: Optional[str] = None
    enrolled_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EventDetailResponse(EventResponse):
    participants: List[RosterEntry] = Field(default_factory=list)


class EventDeleteResponse(BaseModel):
    message: str
    deleted_requests: int = 0
    archived: bool = False


class ReconcileResponse(BaseModel):
    message: str
    added: List[UUID] = Field(default_factory=list)
    removed: List[UUID] = Field(default_factory=list)
