"""Monthly obligation: one ledger row per (student, year, month). Written only by the synchronizer."""

import uuid

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.core.enums import ObligationSource, ObligationStatus
from app.core.timeutils import utc_now
from app.db.session import Base


class MonthlyObligation(Base):
    __tablename__ = "monthly_obligations"
    __table_args__ = (
        UniqueConstraint("student_id", "year", "month", name="uq_monthly_obligation_student_month"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    base_amount = Column(BigInteger, nullable=False)
    discount_amount = Column(BigInteger, nullable=False, default=0)
    net_amount = Column(BigInteger, nullable=False)
    paid_amount = Column(BigInteger, nullable=False, default=0)
    remaining_amount = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default=ObligationStatus.SET.value)
    source = Column(String(20), nullable=False, default=ObligationSource.BASE.value)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"
