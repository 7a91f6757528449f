from app.core.models.student import Classroom, Enrollment, Student
from app.core.models.tariff_version import TariffVersion
from app.core.models.tariff_audit_log import TariffAuditLog
from app.core.models.student_discount import StudentDiscount
from app.core.models.monthly_obligation import MonthlyObligation
from app.core.models.payment_transaction import PaymentTransaction
from app.core.models.payment_coverage import PaymentCoverage
from app.core.models.coverage_version import CoverageVersion

__all__ = [
    "Classroom",
    "Enrollment",
    "Student",
    "TariffVersion",
    "TariffAuditLog",
    "StudentDiscount",
    "MonthlyObligation",
    "PaymentTransaction",
    "PaymentCoverage",
    "CoverageVersion",
]
