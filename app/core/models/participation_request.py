"""
Participation request: a student's intent to join an event. STATUS mutable through the
ledger's transition table only; REJECTED and WITHDRAWN are terminal.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import ParticipationStatus
from app.db.session import Base

_ACTIVE_PREDICATE = text("status IN ('PENDING', 'APPROVED', 'ENROLLED')")


class ParticipationRequest(Base):
    __tablename__ = "participation_requests"
    __table_args__ = (
        # At most one active request per (student, event); terminal rows do not block re-requests
        Index(
            "uq_participation_active_pair",
            "student_id",
            "event_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
        Index("ix_participation_event_status", "event_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ParticipationStatus.PENDING.value)
    requested_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(UUID(as_uuid=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    enrollment_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    student_notified_at = Column(DateTime(timezone=True), nullable=True)
    withdrawn_at = Column(DateTime(timezone=True), nullable=True)
    # Admin override: capacity/eligibility failures were accepted on purpose
    force_enrolled = Column(Boolean, nullable=False, default=False)
    validation_errors = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("Student", foreign_keys=[student_id], lazy="joined")
    event = relationship("Event", foreign_keys=[event_id], lazy="joined")
