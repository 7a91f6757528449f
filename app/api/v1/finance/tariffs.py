"""
Tariff version manager.

Tariff versions are immutable rows. The current tariff is a projection over them: the first
read after a PLANNED version's effective_from activates it and archives its predecessor.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import TariffAuditAction, TariffStatus
from app.core.exceptions import NotFoundError, ValidationError
from app.core.models import TariffAuditLog, TariffVersion
from app.core.timeutils import as_naive_utc, utc_now

from .billing_calendar import normalize_months, resolve_chargeable_months
from .months import next_month_start

logger = logging.getLogger(__name__)

TARIFF_SNAPSHOT_VERSION = 2
HISTORY_LIMIT = 30
AUDIT_LIMIT = 50


@dataclass(frozen=True)
class CurrentTariff:
    version_id: Optional[UUID]
    monthly_amount: int
    annual_amount: int
    chargeable_months: Tuple[int, ...]
    effective_from: Optional[datetime] = None

    def snapshot(self) -> Dict[str, Any]:
        """Tariff snapshot stored on every payment transaction."""
        return {
            "version": TARIFF_SNAPSHOT_VERSION,
            "monthly_amount": self.monthly_amount,
            "annual_amount": self.annual_amount,
            "tariff_version_id": str(self.version_id) if self.version_id else None,
            "chargeable_months": list(self.chargeable_months),
        }


def default_tariff() -> CurrentTariff:
    monthly = settings.finance_default_monthly_amount
    annual = settings.finance_default_annual_amount
    return CurrentTariff(
        version_id=None,
        monthly_amount=monthly,
        annual_amount=annual,
        chargeable_months=resolve_chargeable_months(None, annual, monthly),
    )


def _current_from_version(version: TariffVersion) -> CurrentTariff:
    return CurrentTariff(
        version_id=version.id,
        monthly_amount=int(version.monthly_amount),
        annual_amount=int(version.annual_amount),
        chargeable_months=resolve_chargeable_months(
            version.chargeable_months, version.annual_amount, version.monthly_amount
        ),
        effective_from=version.effective_from,
    )


def _tariff_values(tariff: CurrentTariff) -> Dict[str, Any]:
    return {
        "monthly_amount": tariff.monthly_amount,
        "annual_amount": tariff.annual_amount,
        "chargeable_months": list(tariff.chargeable_months),
        "tariff_version_id": str(tariff.version_id) if tariff.version_id else None,
    }


def normalize_tariff_snapshot(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Read a transaction's tariff snapshot in the current shape.

    Older rows stored camelCase keys and no calendar; the calendar is then derived from the
    stored amounts.
    """
    if not isinstance(raw, dict):
        return None
    if raw.get("version") == TARIFF_SNAPSHOT_VERSION:
        return dict(raw)

    def pick(*names):
        for name in names:
            if raw.get(name) is not None:
                return raw[name]
        return None

    try:
        monthly = int(pick("monthly_amount", "monthlyAmount") or 0)
        annual = int(pick("annual_amount", "annualAmount") or 0)
    except (TypeError, ValueError):
        return None
    months = pick("chargeable_months", "chargeableMonths")
    version_id = pick("tariff_version_id", "tariffVersionId")
    return {
        "version": TARIFF_SNAPSHOT_VERSION,
        "monthly_amount": monthly,
        "annual_amount": annual,
        "tariff_version_id": str(version_id) if version_id else None,
        "chargeable_months": list(resolve_chargeable_months(months, annual, monthly)),
    }


async def _log_tariff_audit(
    db: AsyncSession,
    tariff_version_id: Optional[UUID],
    action: TariffAuditAction,
    old_value: Optional[dict],
    new_value: Optional[dict],
    note: Optional[str],
    performed_by: Optional[UUID],
) -> None:
    db.add(
        TariffAuditLog(
            tariff_version_id=tariff_version_id,
            action=action.value,
            old_value=old_value,
            new_value=new_value,
            note=note,
            performed_by=performed_by,
        )
    )


async def _load_active(db: AsyncSession) -> Optional[TariffVersion]:
    result = await db.execute(
        select(TariffVersion)
        .where(TariffVersion.status == TariffStatus.ACTIVE.value)
        .order_by(TariffVersion.effective_from.desc(), TariffVersion.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_current(db: AsyncSession, now: Optional[datetime] = None) -> CurrentTariff:
    """
    Current tariff, activating the newest due PLANNED version first.

    Activation archives the previous ACTIVE version and every other PLANNED version that is
    already due, writes an ACTIVATE audit entry and commits. Without any ACTIVE version the
    configured defaults are returned and nothing is written.
    """
    now = as_naive_utc(now)
    due_result = await db.execute(
        select(TariffVersion)
        .where(
            TariffVersion.status == TariffStatus.PLANNED.value,
            TariffVersion.effective_from <= now,
        )
        .order_by(TariffVersion.effective_from.desc(), TariffVersion.created_at.desc())
        .limit(1)
    )
    due = due_result.scalar_one_or_none()

    if due is not None:
        previous = await _load_active(db)
        old_value = _tariff_values(_current_from_version(previous)) if previous else None
        try:
            await db.execute(
                update(TariffVersion)
                .where(TariffVersion.status == TariffStatus.ACTIVE.value, TariffVersion.id != due.id)
                .values(status=TariffStatus.ARCHIVED.value)
                .execution_options(synchronize_session=False)
            )
            await db.execute(
                update(TariffVersion)
                .where(
                    TariffVersion.status == TariffStatus.PLANNED.value,
                    TariffVersion.effective_from <= now,
                    TariffVersion.id != due.id,
                )
                .values(status=TariffStatus.ARCHIVED.value)
                .execution_options(synchronize_session=False)
            )
            due.status = TariffStatus.ACTIVE.value
            current = _current_from_version(due)
            await _log_tariff_audit(
                db,
                due.id,
                TariffAuditAction.ACTIVATE,
                old_value,
                _tariff_values(current),
                "Planned tariff activated",
                due.created_by,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        if previous is not None:
            await db.refresh(previous)
        logger.info(
            "Activated tariff version %s (monthly=%s, annual=%s)",
            due.id,
            current.monthly_amount,
            current.annual_amount,
        )
        return current

    active = await _load_active(db)
    if active is None:
        return default_tariff()
    return _current_from_version(active)


def _validate_amounts(monthly_amount: int, annual_amount: int) -> None:
    low, high = settings.finance_min_amount, settings.finance_max_amount
    offending = {
        name: value
        for name, value in (("monthly_amount", monthly_amount), ("annual_amount", annual_amount))
        if not low <= value <= high
    }
    if offending:
        raise ValidationError(
            f"Tariff amounts must be between {low} and {high}",
            code="AMOUNT_OUT_OF_RANGE",
            details={"fields": offending, "min": low, "max": high},
        )
    if annual_amount > monthly_amount * 12:
        raise ValidationError(
            "annual_amount must not exceed monthly_amount * 12",
            code="ANNUAL_EXCEEDS_MONTHLY",
            details={"monthly_amount": monthly_amount, "annual_amount": annual_amount},
        )


async def _create_version(
    db: AsyncSession,
    action: TariffAuditAction,
    monthly_amount: int,
    annual_amount: Optional[int],
    chargeable_months: Optional[List[int]],
    effective_from: Optional[datetime],
    academic_year_label: Optional[str],
    note: Optional[str],
    created_by: Optional[UUID],
    now: Optional[datetime],
    extra_audit: Optional[Dict[str, Any]] = None,
) -> TariffVersion:
    now = as_naive_utc(now)
    current = await resolve_current(db, now=now)

    if chargeable_months is not None:
        months = normalize_months(chargeable_months)
        if not months:
            raise ValidationError(
                "chargeable_months must contain at least one month between 1 and 12",
                code="INVALID_CALENDAR",
                details={"chargeable_months": list(chargeable_months)},
            )
    else:
        months = current.chargeable_months
    if annual_amount is None:
        annual_amount = monthly_amount * len(months)
    _validate_amounts(monthly_amount, annual_amount)

    start = as_naive_utc(effective_from) if effective_from is not None else next_month_start(now)
    version = TariffVersion(
        monthly_amount=monthly_amount,
        annual_amount=annual_amount,
        chargeable_months=list(months),
        academic_year_label=academic_year_label,
        effective_from=start,
        status=TariffStatus.PLANNED.value,
        note=note,
        created_by=created_by,
        created_at=utc_now(),
    )
    try:
        db.add(version)
        await db.flush()
        new_value = {
            "monthly_amount": monthly_amount,
            "annual_amount": annual_amount,
            "chargeable_months": list(months),
            "effective_from": start.isoformat(),
        }
        if extra_audit:
            new_value.update(extra_audit)
        await _log_tariff_audit(db, version.id, action, _tariff_values(current), new_value, note, created_by)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(version)
    logger.info("Planned tariff version %s effective %s (%s)", version.id, start.date(), action.value)
    return version


async def create_planned_version(
    db: AsyncSession,
    monthly_amount: int,
    annual_amount: Optional[int] = None,
    chargeable_months: Optional[List[int]] = None,
    effective_from: Optional[datetime] = None,
    academic_year_label: Optional[str] = None,
    note: Optional[str] = None,
    created_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> TariffVersion:
    """Always a new PLANNED row; effective_from defaults to the first day of next month."""
    return await _create_version(
        db,
        TariffAuditAction.CREATE,
        monthly_amount,
        annual_amount,
        chargeable_months,
        effective_from,
        academic_year_label,
        note,
        created_by,
        now,
    )


async def rollback_to_version(
    db: AsyncSession,
    source_version_id: UUID,
    effective_from: Optional[datetime] = None,
    note: Optional[str] = None,
    created_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> TariffVersion:
    source = await db.get(TariffVersion, source_version_id)
    if source is None:
        raise NotFoundError("Tariff version not found", code="TARIFF_NOT_FOUND")
    return await _create_version(
        db,
        TariffAuditAction.ROLLBACK,
        int(source.monthly_amount),
        int(source.annual_amount),
        list(resolve_chargeable_months(source.chargeable_months, source.annual_amount, source.monthly_amount)),
        effective_from,
        source.academic_year_label,
        note or f"Rollback to {source.id}",
        created_by,
        now,
        extra_audit={"source_version_id": str(source.id)},
    )


async def list_versions(db: AsyncSession, limit: int = HISTORY_LIMIT) -> List[TariffVersion]:
    result = await db.execute(
        select(TariffVersion)
        .order_by(TariffVersion.effective_from.desc(), TariffVersion.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_audits(db: AsyncSession, limit: int = AUDIT_LIMIT) -> List[TariffAuditLog]:
    result = await db.execute(select(TariffAuditLog).order_by(TariffAuditLog.created_at.desc()).limit(limit))
    return list(result.scalars().all())
