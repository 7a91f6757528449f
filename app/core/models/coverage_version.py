"""Coverage version: per (student, year, month) counter advanced by every payment commit and revert."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer
from sqlalchemy.dialects.postgresql import UUID

from app.core.timeutils import utc_now
from app.db.session import Base


class CoverageVersion(Base):
    """
    Rows are never deleted, so a version number is handed out once per month. A payment
    commits only if the month is still at the version it was planned against; a revert in
    between advances it as well.
    """

    __tablename__ = "payment_coverage_versions"

    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), primary_key=True)
    year = Column(Integer, primary_key=True)
    month = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
