from enum import Enum


class TariffStatus(str, Enum):
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class TariffAuditAction(str, Enum):
    CREATE = "CREATE"
    ACTIVATE = "ACTIVATE"
    ROLLBACK = "ROLLBACK"


class DiscountKind(str, Enum):
    PERCENT = "PERCENT"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    FULL_WAIVER = "FULL_WAIVER"


class ObligationStatus(str, Enum):
    SET = "SET"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


class ObligationSource(str, Enum):
    BASE = "BASE"
    DISCOUNT = "DISCOUNT"


class PaymentKind(str, Enum):
    MONTHLY = "MONTHLY"
    ANNUAL = "ANNUAL"
    AD_HOC = "AD_HOC"


class PaymentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REVERSED = "REVERSED"


class DebtStatus(str, Enum):
    DEBTOR = "DEBTOR"
    NO_DEBT = "NO_DEBT"


class DebtStatusFilter(str, Enum):
    ALL = "ALL"
    DEBTOR = "DEBTOR"
    NO_DEBT = "NO_DEBT"


class DebtMonthFilter(str, Enum):
    ALL = "ALL"
    CURRENT = "CURRENT"
    PREVIOUS = "PREVIOUS"


class ConflictKind(str, Enum):
    DUPLICATE_REQUEST = "DUPLICATE_REQUEST"
    COVERAGE_COLLISION = "COVERAGE_COLLISION"
    ALREADY_COVERED = "ALREADY_COVERED"
    ALREADY_REVERSED = "ALREADY_REVERSED"
    ALREADY_DEACTIVATED = "ALREADY_DEACTIVATED"
    DISCOUNT_EXCEEDS_TARIFF = "DISCOUNT_EXCEEDS_TARIFF"
    ENROLLMENT_REQUIRED = "ENROLLMENT_REQUIRED"
