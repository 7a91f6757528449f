"""Student, classroom and enrollment: the parts of the school roster the finance ledger reads."""

import uuid

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.timeutils import utc_now
from app.db.session import Base


class Classroom(Base):
    __tablename__ = "classrooms"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False)
    academic_year = Column(String(20), nullable=True)  # e.g. "2025-2026"
    created_at = Column(DateTime, default=utc_now, nullable=False)


class Student(Base):
    __tablename__ = "students"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    username = Column(String(100), nullable=True)
    phone = Column(String(30), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    enrollments = relationship("Enrollment", back_populates="student", order_by="desc(Enrollment.created_at)")


class Enrollment(Base):
    """Student placement in a classroom. At most one active enrollment per student."""

    __tablename__ = "enrollments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    classroom_id = Column(UUID(as_uuid=True), ForeignKey("classrooms.id", ondelete="RESTRICT"), nullable=False)
    start_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    student = relationship("Student", back_populates="enrollments")
    classroom = relationship("Classroom")
