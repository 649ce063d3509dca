from app.core.models.school import School, Student
from app.core.models.event import Event, EventParticipant, EventParticipantStudent
from app.core.models.participation_request import ParticipationRequest
from app.core.models.audit_log import AuditLog

__all__ = [
    "School",
    "Student",
    "Event",
    "EventParticipant",
    "EventParticipantStudent",
    "ParticipationRequest",
    "AuditLog",
]
