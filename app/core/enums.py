from enum import Enum


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    SCHOOL_ADMIN = "SCHOOL_ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"


class EventStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class LifecycleStatus(str, Enum):
    """Whether an event is still in use; independent of its approval status."""

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class ParticipationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ENROLLED = "ENROLLED"
    WITHDRAWN = "WITHDRAWN"


ACTIVE_STATUSES = (
    ParticipationStatus.PENDING.value,
    ParticipationStatus.APPROVED.value,
    ParticipationStatus.ENROLLED.value,
)
# Requests that hold a seat (mirrored on the roster)
SEATED_STATUSES = (
    ParticipationStatus.APPROVED.value,
    ParticipationStatus.ENROLLED.value,
)


class EnrollmentStatus(str, Enum):
    """Derived, read-only view of how an event is filling up."""

    OPEN = "OPEN"
    FILLING = "FILLING"
    FULL = "FULL"
    CLOSED = "CLOSED"
    ENDED = "ENDED"


class BatchAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
