"""
Events and their participant roster.

The roster (event_participants + event_participant_students) is a projection of the
participation ledger: one entry per school, holding the students currently seated.
Only the enrollment coordinator writes it. `version` is bumped on every roster write
and guards the capacity check against concurrent writers.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import EventStatus, LifecycleStatus
from app.db.session import Base


class Event(Base):
    __tablename__ = "events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Owning school; NULL = global event open to every school
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    registration_deadline = Column(DateTime(timezone=True), nullable=True)  # NULL = no deadline
    eligible_grades = Column(JSON, nullable=False, default=list)  # [] = all grades
    max_participants = Column(Integer, nullable=True)  # NULL = unlimited
    max_participants_per_school = Column(Integer, nullable=True)  # NULL = unlimited
    status = Column(String(20), nullable=False, default=EventStatus.PENDING.value)
    # ARCHIVED events leave student listings and accept no new participants
    lifecycle_status = Column(String(20), nullable=False, default=LifecycleStatus.ACTIVE.value, index=True)
    created_by = Column(UUID(as_uuid=True), nullable=False)
    created_by_role = Column(String(50), nullable=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    participants = relationship(
        "EventParticipant",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventParticipant.joined_at",
        lazy="selectin",
    )

    def participant_for(self, school_id) -> Optional["EventParticipant"]:
        for entry in self.participants:
            if entry.school_id == school_id:
                return entry
        return None

    def roster_student_ids(self, school_id=None) -> List[uuid.UUID]:
        ids = []
        for entry in self.participants:
            if school_id is None or entry.school_id == school_id:
                ids.extend(s.student_id for s in entry.students)
        return ids

    @property
    def enrolled_count(self) -> int:
        return sum(len(entry.students) for entry in self.participants)


class EventParticipant(Base):
    """Per-school roster entry of an event."""

    __tablename__ = "event_participants"
    __table_args__ = (
        UniqueConstraint("event_id", "school_id", name="uq_event_participant_school"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False)
    joined_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    event = relationship("Event", back_populates="participants")
    students = relationship(
        "EventParticipantStudent",
        back_populates="participant",
        cascade="all, delete-orphan",
        order_by="EventParticipantStudent.added_at",
        lazy="selectin",
    )


class EventParticipantStudent(Base):
    __tablename__ = "event_participant_students"
    __table_args__ = (
        # A student is seated at most once per event, whatever the school entry
        UniqueConstraint("event_id", "student_id", name="uq_event_roster_student"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participant_id = Column(
        UUID(as_uuid=True), ForeignKey("event_participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    added_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    participant = relationship("EventParticipant", back_populates="students")
