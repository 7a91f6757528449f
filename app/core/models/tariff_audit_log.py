"""Tariff audit log: immutable trail of tariff version creation, activation and rollback."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.timeutils import utc_now
from app.db.session import Base
from app.db.types import JSONType


class TariffAuditLog(Base):
    __tablename__ = "tariff_audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tariff_version_id = Column(
        UUID(as_uuid=True),
        ForeignKey("tariff_versions.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    action = Column(String(30), nullable=False)  # CREATE, ACTIVATE, ROLLBACK
    old_value = Column(JSONType, nullable=True)
    new_value = Column(JSONType, nullable=True)
    note = Column(Text, nullable=True)
    performed_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    tariff_version = relationship("TariffVersion")
