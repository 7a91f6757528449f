"""Payment transaction: immutable once created except the ACTIVE -> REVERSED flip."""

import uuid

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import PaymentStatus
from app.core.timeutils import utc_now
from app.db.session import Base
from app.db.types import JSONType


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)  # MONTHLY, ANNUAL, AD_HOC
    amount = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.ACTIVE.value)
    idempotency_key = Column(String(100), nullable=True, unique=True)
    # Month keys covered at commit time; kept after revert when coverage rows are gone
    covered_months = Column(JSONType, nullable=True)
    tariff_version_id = Column(UUID(as_uuid=True), ForeignKey("tariff_versions.id", ondelete="SET NULL"), nullable=True)
    tariff_snapshot = Column(JSONType, nullable=True)
    note = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False, index=True)
    reversed_at = Column(DateTime, nullable=True)
    reversed_by = Column(UUID(as_uuid=True), nullable=True)
    revert_note = Column(Text, nullable=True)

    coverages = relationship("PaymentCoverage", back_populates="transaction")
