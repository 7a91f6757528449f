"""Tariff version: dated, immutable snapshot of the monthly/annual price and billing calendar."""

import uuid

from sqlalchemy import BigInteger, Column, DateTime, String, Text
from sqlalchemy.dialects.postgresql import UUID

from app.core.enums import TariffStatus
from app.core.timeutils import utc_now
from app.db.session import Base
from app.db.types import JSONType


class TariffVersion(Base):
    """
    One row per tariff version. Rows are never deleted or repriced; only status moves
    PLANNED -> ACTIVE -> ARCHIVED. At most one row is ACTIVE.
    """

    __tablename__ = "tariff_versions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    monthly_amount = Column(BigInteger, nullable=False)
    annual_amount = Column(BigInteger, nullable=False)
    # Months 1..12 billed per academic year. NULL on rows written before calendars existed.
    chargeable_months = Column(JSONType, nullable=True)
    academic_year_label = Column(String(20), nullable=True)
    effective_from = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=TariffStatus.PLANNED.value)
    note = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
