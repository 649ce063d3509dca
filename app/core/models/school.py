"""
Schools (tenants) and their students.

Students are owned by the student-management subsystem; the participation core only
reads grade and school from them.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class School(Base):
    """A participating school. School admins are scoped to exactly one school."""

    __tablename__ = "schools"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    # Human-readable public identifier, never used as FK
    code = Column(String(20), unique=True, nullable=True)
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class Student(Base):
    __tablename__ = "students"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Identity-provider user behind this student (session "sub")
    user_id = Column(UUID(as_uuid=True), unique=True, nullable=False, index=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    grade = Column(String(50), nullable=True)  # e.g. "Grade 9"; None = not configured
    roll_number = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    school = relationship("School", foreign_keys=[school_id], lazy="joined")
