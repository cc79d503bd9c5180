"""Leave taxonomy lookups, balance ledger setup/accrual, payroll-impact math.

``LeaveCalculationService`` is application-scoped: it holds the catalog and
the balance read cache and receives a database session per call. Balance
mutations made here commit their own transaction and invalidate the cached
balance list and summary only after that commit succeeds.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import AuditEvent, AuditLogger, DatabaseAuditLogger
from leave_engine.common.cache import BalanceCache
from leave_engine.common.constants import (
    AUDIT_ENTITY_LEAVE_BALANCE,
    AUDIT_ROLE_SYSTEM,
    AuditAction,
    LeaveType,
)
from leave_engine.leave.catalog import LeaveCatalog, load_catalog
from leave_engine.leave.models import LeaveBalance
from leave_engine.leave.schemas import (
    LeaveBalanceOut,
    LeaveBalanceSummary,
    LeaveImpactOut,
    LeaveTypeBalanceSummary,
    LeaveTypeOut,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def current_year() -> int:
    """Balance year used by every operation that is not given one."""
    return datetime.now(timezone.utc).year


def balances_cache_key(user_id: uuid.UUID, country_code: str, year: int) -> str:
    return f"leave_balances:{user_id}:{country_code.upper()}:{year}"


def summary_cache_key(user_id: uuid.UUID, country_code: str, year: int) -> str:
    return f"leave_balance_summary:{user_id}:{country_code.upper()}:{year}"


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


# ═════════════════════════════════════════════════════════════════════
# LeaveCalculationService
# ═════════════════════════════════════════════════════════════════════


class LeaveCalculationService:
    """Per-country catalog, balance ledger initialisation/accrual, payroll impact."""

    def __init__(
        self,
        cache: BalanceCache,
        catalog: Optional[LeaveCatalog] = None,
        *,
        cache_ttl_seconds: Optional[int] = None,
    ) -> None:
        self.cache = cache
        self.catalog = catalog or load_catalog()
        self.cache_ttl_seconds = cache_ttl_seconds

    # ─────────────────────────────────────────────────────────────────
    # Catalog lookups
    # ─────────────────────────────────────────────────────────────────

    def get_leave_types_for_country(self, country_code: str) -> list[LeaveType]:
        return self.catalog.leave_types_for(country_code)

    def get_leave_type_catalog(self, country_code: str) -> list[LeaveTypeOut]:
        country = self.catalog.country(country_code)
        if country is None:
            return []
        return [
            LeaveTypeOut(
                leave_type=leave_type,
                label=policy.label,
                default_days=policy.default_days,
                accrual_rate=policy.accrual_rate,
            )
            for leave_type, policy in country.leave_types.items()
        ]

    def is_valid_leave_type_for_country(self, leave_type: LeaveType, country_code: str) -> bool:
        return leave_type in self.catalog.leave_types_for(country_code)

    def get_default_leave_days(self, leave_type: LeaveType, country_code: str) -> Decimal:
        policy = self.catalog.policy(leave_type, country_code)
        return policy.default_days if policy else Decimal("0")

    def get_accrual_rate(self, leave_type: LeaveType, country_code: str) -> Decimal:
        policy = self.catalog.policy(leave_type, country_code)
        return policy.accrual_rate if policy else Decimal("0")

    def get_working_days_per_month(self, country_code: str) -> int:
        return self.catalog.working_days_per_month(country_code)

    # ─────────────────────────────────────────────────────────────────
    # Balance ledger
    # ─────────────────────────────────────────────────────────────────

    async def initialize_balances(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        country_code: str,
        year: Optional[int] = None,
        *,
        audit: Optional[AuditLogger] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalance]:
        """Create the missing balance rows for every leave type of *country_code*.

        Existing rows are never touched, so the call is idempotent. Only the
        rows created by this call are returned.
        """
        country_code = country_code.upper()
        year = year or current_year()

        result = await db.execute(
            select(LeaveBalance.leave_type).where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.country_code == country_code,
                LeaveBalance.year == year,
            )
        )
        existing = set(result.scalars().all())

        created: list[LeaveBalance] = []
        for leave_type in self.get_leave_types_for_country(country_code):
            if leave_type in existing:
                continue
            default_days = self.get_default_leave_days(leave_type, country_code)
            balance = LeaveBalance(
                user_id=user_id,
                country_code=country_code,
                leave_type=leave_type,
                year=year,
                total_days=default_days,
                used_days=Decimal("0"),
                available_days=default_days,
                accrual_rate=self.get_accrual_rate(leave_type, country_code),
            )
            db.add(balance)
            created.append(balance)

        if not created:
            return created

        await db.flush()
        await (audit or DatabaseAuditLogger(db)).log(
            AuditEvent(
                action=AuditAction.balances_initialized.value,
                entity_type=AUDIT_ENTITY_LEAVE_BALANCE,
                entity_id=str(user_id),
                actor_user_id=actor_id,
                actor_role=AUDIT_ROLE_SYSTEM,
                changes={
                    "country_code": country_code,
                    "year": year,
                    "leave_types": [b.leave_type.value for b in created],
                },
            )
        )
        await db.commit()
        await self.invalidate_user_leave_balance_cache(user_id, country_code, year)

        logger.info(
            "Initialised %d leave balances for user %s (%s, %s)",
            len(created), user_id, country_code, year,
        )
        return created

    async def accrue_leave(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        country_code: str,
        year: Optional[int] = None,
        *,
        audit: Optional[AuditLogger] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalance]:
        """Add one accrual cycle to every balance row with a positive rate."""
        country_code = country_code.upper()
        year = year or current_year()

        result = await db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.country_code == country_code,
                LeaveBalance.year == year,
                LeaveBalance.accrual_rate > 0,
            )
            .with_for_update()
        )
        balances = list(result.scalars().all())
        for balance in balances:
            balance.accrue()

        if not balances:
            return balances

        await db.flush()
        await (audit or DatabaseAuditLogger(db)).log(
            AuditEvent(
                action=AuditAction.balances_accrued.value,
                entity_type=AUDIT_ENTITY_LEAVE_BALANCE,
                entity_id=str(user_id),
                actor_user_id=actor_id,
                actor_role=AUDIT_ROLE_SYSTEM,
                changes={
                    "country_code": country_code,
                    "year": year,
                    "accrued": {b.leave_type.value: b.accrual_rate for b in balances},
                },
            )
        )
        await db.commit()
        await self.invalidate_user_leave_balance_cache(user_id, country_code, year)

        logger.info(
            "Accrued %d leave balances for user %s (%s, %s)",
            len(balances), user_id, country_code, year,
        )
        return balances

    # ─────────────────────────────────────────────────────────────────
    # Payroll impact
    # ─────────────────────────────────────────────────────────────────

    def calculate_leave_impact(
        self,
        leave_type: LeaveType,
        total_days: Decimal,
        is_paid: bool,
        base_salary: Decimal,
        country_code: str,
        user_id: Optional[uuid.UUID] = None,
    ) -> LeaveImpactOut:
        """Pure payroll arithmetic for one leave.

        The daily rate is carried at full precision; only the resulting
        amounts are rounded half-up to cents.
        """
        total_days = Decimal(total_days)
        daily_rate = Decimal(base_salary) / Decimal(self.get_working_days_per_month(country_code))
        amount = _money(daily_rate * total_days)

        return LeaveImpactOut(
            user_id=user_id,
            leave_type=leave_type,
            country_code=country_code.upper(),
            total_days=total_days,
            is_paid=is_paid,
            daily_rate=_money(daily_rate),
            paid_amount=amount if is_paid else _money(Decimal("0")),
            deduction_amount=_money(Decimal("0")) if is_paid else amount,
        )

    # ─────────────────────────────────────────────────────────────────
    # Cached balance reads
    # ─────────────────────────────────────────────────────────────────

    async def get_user_leave_balances(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        country_code: str,
        year: Optional[int] = None,
    ) -> list[LeaveBalanceOut]:
        country_code = country_code.upper()
        year = year or current_year()
        key = balances_cache_key(user_id, country_code, year)

        cached = await self.cache.get(key)
        if cached is not None:
            return [LeaveBalanceOut.model_validate(item) for item in cached]

        result = await db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.country_code == country_code,
                LeaveBalance.year == year,
            )
            .order_by(LeaveBalance.leave_type)
        )
        balances = [LeaveBalanceOut.model_validate(b) for b in result.scalars().all()]

        await self.cache.set(
            key,
            [b.model_dump(mode="json") for b in balances],
            self.cache_ttl_seconds,
        )
        return balances

    async def get_leave_balance_summary(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        country_code: str,
        year: Optional[int] = None,
    ) -> LeaveBalanceSummary:
        country_code = country_code.upper()
        year = year or current_year()
        key = summary_cache_key(user_id, country_code, year)

        cached = await self.cache.get(key)
        if cached is not None:
            return LeaveBalanceSummary.model_validate(cached)

        balances = await self.get_user_leave_balances(db, user_id, country_code, year)
        summary = LeaveBalanceSummary(
            user_id=user_id,
            country_code=country_code,
            year=year,
            total_days=sum((b.total_days for b in balances), Decimal("0")),
            used_days=sum((b.used_days for b in balances), Decimal("0")),
            available_days=sum((b.available_days for b in balances), Decimal("0")),
            by_type=[
                LeaveTypeBalanceSummary(
                    leave_type=b.leave_type,
                    total_days=b.total_days,
                    used_days=b.used_days,
                    available_days=b.available_days,
                )
                for b in balances
            ],
        )

        await self.cache.set(key, summary.model_dump(mode="json"), self.cache_ttl_seconds)
        return summary

    async def invalidate_user_leave_balance_cache(
        self,
        user_id: uuid.UUID,
        country_code: str,
        year: int,
    ) -> None:
        """Drop the cached balance list and summary; call only after a commit."""
        await self.cache.invalidate(
            balances_cache_key(user_id, country_code, year),
            summary_cache_key(user_id, country_code, year),
        )
        logger.debug("Invalidated balance cache for %s (%s, %s)", user_id, country_code, year)
