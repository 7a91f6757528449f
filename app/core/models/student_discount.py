"""Student discount over a run of months, with a frozen per-month amount snapshot."""

import uuid

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.timeutils import utc_now
from app.db.session import Base
from app.db.types import JSONType


class StudentDiscount(Base):
    """
    Discount (PERCENT, FIXED_AMOUNT, FULL_WAIVER) for months [start_month, start_month + month_count).
    monthly_amount_snapshot holds the net amount owed per covered month as computed at creation,
    so later tariff changes do not reprice elapsed months.
    """

    __tablename__ = "student_discounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    value = Column(BigInteger, nullable=True)  # percent or amount; NULL for FULL_WAIVER
    start_month = Column(String(7), nullable=False)  # YYYY-MM
    month_count = Column(Integer, nullable=False, default=1)
    # Optional columns: may be missing on databases that have not been migrated yet
    monthly_amount_snapshot = Column(JSONType, nullable=True)
    snapshot_version = Column(Integer, nullable=True)
    reason = Column(String(120), nullable=False)
    note = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    deactivated_at = Column(DateTime, nullable=True)
    deactivated_by = Column(UUID(as_uuid=True), nullable=True)
    deactivation_reason = Column(String(200), nullable=True)

    student = relationship("Student")
