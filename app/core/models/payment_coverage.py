"""Payment coverage: the amount a transaction applies to one (student, year, month)."""

import uuid

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.timeutils import utc_now
from app.db.session import Base


class PaymentCoverage(Base):
    """
    sequence is the month's coverage version the payment was planned against (see
    CoverageVersion). Versions are never reused, so two commits planned from the same ledger
    state pick the same sequence and the unique constraint lets exactly one of them through.
    Rows are deleted (not soft-deleted) when their transaction is reversed.
    """

    __tablename__ = "payment_coverages"
    __table_args__ = (
        UniqueConstraint("student_id", "year", "month", "sequence", name="uq_payment_coverage_student_month_seq"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    transaction_id = Column(
        UUID(as_uuid=True),
        ForeignKey("payment_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    amount = Column(BigInteger, nullable=False)
    sequence = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    transaction = relationship("PaymentTransaction", back_populates="coverages")
