"""
Quota ledger service.

Single source of truth for a user's current-period consumption. Every
mutation is one conditional SQL UPDATE so that the limit check and the
increment happen atomically relative to concurrent consumers; there is no
read-modify-write in Python.

Callers own the transaction: the ledger flushes but never commits.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.usage import (
    ConsumeResult,
    KindUsage,
    OverageResult,
    QuotaKind,
    UsageLevel,
    UsageStatus,
)
from core.errors import (
    ConfigurationError,
    InvariantViolation,
    TransientStoreError,
    UsageLedgerNotFound,
)
from core.periods import advance_period, ensure_utc, next_period_end, utcnow
from core.plans import PlanLimits, plan_limits
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database.models.usage import UsageLedgerEntry
from infrastructure.database.models.user import User
from infrastructure.database.upsert import dialect_insert

logger = logging.getLogger(__name__)

# Re-reads allowed when a concurrent roll or creation wins the race
MAX_PERIOD_ATTEMPTS = 3


def _columns(kind: QuotaKind):
    """Map a quota kind to its (used, limit) columns."""
    if kind == QuotaKind.PRIMARY:
        return UsageLedgerEntry.primary_used, UsageLedgerEntry.primary_limit
    return UsageLedgerEntry.secondary_used, UsageLedgerEntry.secondary_limit


def _counters_non_negative():
    """WHERE clauses that keep corrupt rows out of every automatic mutation."""
    return (
        UsageLedgerEntry.primary_used >= 0,
        UsageLedgerEntry.secondary_used >= 0,
        UsageLedgerEntry.overage_used >= 0,
    )


def remaining_for(entry: UsageLedgerEntry, kind: QuotaKind) -> Optional[int]:
    """Remaining units of *kind* on *entry*; None means unlimited."""
    if kind == QuotaKind.PRIMARY:
        used, limit = entry.primary_used, entry.primary_limit
    else:
        used, limit = entry.secondary_used, entry.secondary_limit
    if limit is None:
        return None
    return max(0, limit - used)


class QuotaLedger:
    """
    Check, consume and report per-user generation quota.

    Quota exhaustion is a normal result (``ConsumeResult(allowed=False)``).
    Store errors and configuration errors propagate to the caller; the
    consumption path never falls back to "allowed".
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        """
        Initialize the quota ledger.

        Args:
            db: Async database session
            settings: Tuning overrides; defaults to the application settings
            session_factory: Sessions for writes that must commit independently
                of the caller (the reconciliation flag); defaults to the
                engine ``db`` is bound to
        """
        self.db = db
        self.settings = settings or get_settings()
        self.session_factory = session_factory or async_sessionmaker(
            db.bind, class_=AsyncSession, expire_on_commit=False
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_current_entry(self, user_id: str) -> Optional[UsageLedgerEntry]:
        """Load the user's current entry, bypassing any stale identity-map copy."""
        result = await self.db.execute(
            select(UsageLedgerEntry)
            .where(
                UsageLedgerEntry.user_id == user_id,
                UsageLedgerEntry.is_current.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _reload(self, entry_id: str) -> UsageLedgerEntry:
        result = await self.db.execute(
            select(UsageLedgerEntry)
            .where(UsageLedgerEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _require_current(self, user_id: str) -> UsageLedgerEntry:
        entry = await self.get_current_entry(user_id)
        if entry is None:
            raise UsageLedgerNotFound(user_id)
        return entry

    async def resolve_plan_id(
        self,
        user_id: str,
        plan_id: Optional[str] = None,
        fallback: Optional[str] = None,
    ) -> str:
        """
        Resolve the plan that governs the user's next period.

        An explicit ``plan_id`` wins, then the billing layer's ``users`` row,
        then ``fallback`` (the plan of the entry being rolled).

        Raises:
            ConfigurationError: If no plan can be determined
        """
        if plan_id:
            return plan_id

        result = await self.db.execute(
            select(User.subscription_plan).where(User.id == user_id)
        )
        subscription_plan = result.scalar_one_or_none()
        if subscription_plan:
            return subscription_plan
        if fallback:
            return fallback

        raise ConfigurationError(f"No plan on record for user {user_id}")

    # ------------------------------------------------------------------
    # Period lifecycle
    # ------------------------------------------------------------------

    async def ensure_current_period(
        self,
        user_id: str,
        plan_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> UsageLedgerEntry:
        """
        Return the user's current entry, creating or rolling it when needed.

        Safe under concurrency: a first entry is inserted with
        ``ON CONFLICT DO NOTHING`` against the partial unique index, and an
        expired entry is superseded by a conditional update that only one
        racer can win. Losers re-read the winner's row.

        Args:
            user_id: User ID
            plan_id: Plan for a newly created period; resolved from the
                ``users`` row when omitted
            now: Evaluation time (defaults to the current UTC time)

        Returns:
            The current UsageLedgerEntry (``period_start <= now < period_end``)

        Raises:
            ConfigurationError: Unknown plan or no plan on record
            InvariantViolation: The entry holds impossible counters or is
                awaiting manual reconciliation
        """
        now = ensure_utc(now or utcnow())

        for _ in range(MAX_PERIOD_ATTEMPTS):
            entry = await self.get_current_entry(user_id)

            if entry is None:
                await self._create_first_period(user_id, plan_id, now)
                continue

            await self._check_invariants(entry)

            if ensure_utc(entry.period_end) > now:
                return entry

            successor = await self._roll(entry, plan_id, now)
            if successor is not None:
                return successor

        raise TransientStoreError(
            f"Could not establish a current usage period for user {user_id}"
        )

    async def _create_first_period(
        self, user_id: str, plan_id: Optional[str], now: datetime
    ) -> None:
        limits = plan_limits(await self.resolve_plan_id(user_id, plan_id))
        period_end = next_period_end(now, limits.reset_cadence, now.day)

        stmt = (
            dialect_insert(self.db, UsageLedgerEntry)
            .values(**self._period_values(user_id, limits, now, period_end, now.day, now))
            .on_conflict_do_nothing()
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 1:
            logger.info(
                f"Opened first usage period for user {user_id} on plan {limits.plan_id} "
                f"({now.isoformat()} -> {period_end.isoformat()})",
                extra={"user_id": user_id},
            )
        else:
            logger.debug(f"Concurrent first-period creation for user {user_id}; re-reading")

    async def _roll(
        self, entry: UsageLedgerEntry, plan_id: Optional[str], now: datetime
    ) -> Optional[UsageLedgerEntry]:
        """
        Supersede an expired entry and open its successor.

        Returns None when another roller already superseded the entry.
        """
        user_id = entry.user_id
        limits = plan_limits(await self.resolve_plan_id(user_id, plan_id, entry.plan_id))

        # Only the caller whose UPDATE matches still-current, still-expired wins
        result = await self.db.execute(
            update(UsageLedgerEntry)
            .where(
                UsageLedgerEntry.id == entry.id,
                UsageLedgerEntry.is_current.is_(True),
                UsageLedgerEntry.reconciliation_required.is_(False),
                UsageLedgerEntry.period_end <= now,
            )
            .values(is_current=False, superseded_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.debug(f"Usage period for user {user_id} already rolled by another worker")
            return None

        period_start, period_end = advance_period(
            ensure_utc(entry.period_end),
            limits.reset_cadence,
            now,
            entry.billing_anchor_day,
        )
        successor = UsageLedgerEntry(
            **self._period_values(
                user_id, limits, period_start, period_end, entry.billing_anchor_day, now
            )
        )
        self.db.add(successor)
        await self.db.flush()

        logger.info(
            f"Rolled usage period for user {user_id} on plan {limits.plan_id}: "
            f"{period_start.isoformat()} -> {period_end.isoformat()}",
            extra={"user_id": user_id},
        )
        return successor

    @staticmethod
    def _period_values(
        user_id: str,
        limits: PlanLimits,
        period_start: datetime,
        period_end: datetime,
        anchor_day: int,
        now: datetime,
    ) -> dict:
        return {
            "user_id": user_id,
            "plan_id": limits.plan_id,
            "period_start": period_start,
            "period_end": period_end,
            "billing_anchor_day": anchor_day,
            "primary_used": 0,
            "secondary_used": 0,
            "primary_limit": limits.primary_limit,
            "secondary_limit": limits.secondary_limit,
            "overage_used": 0,
            "max_overage": limits.max_overage,
            "overage_charge_cents": 0,
            "last_reset_at": now,
            "next_reset_at": period_end,
            "is_current": True,
            "reconciliation_required": False,
        }

    async def _check_invariants(self, entry: UsageLedgerEntry) -> None:
        """Refuse to touch an entry with impossible counters, flagging it for an operator."""
        if entry.reconciliation_required:
            raise InvariantViolation(entry.user_id, "entry is awaiting manual reconciliation")

        negatives = [
            name
            for name in ("primary_used", "secondary_used", "overage_used")
            if getattr(entry, name) < 0
        ]
        if not negatives:
            return

        detail = f"negative counters: {', '.join(negatives)}"
        logger.critical(
            f"Usage ledger entry {entry.id} for user {entry.user_id} has {detail}; "
            "excluded from automatic mutation until reconciled",
            extra={"user_id": entry.user_id},
        )
        await self._flag_for_reconciliation(entry.id)
        raise InvariantViolation(entry.user_id, detail)

    async def _flag_for_reconciliation(self, entry_id: str) -> None:
        """Commit the flag in its own transaction so a caller's rollback cannot undo it."""
        async with self.session_factory() as flag_db:
            await flag_db.execute(
                update(UsageLedgerEntry)
                .where(UsageLedgerEntry.id == entry_id)
                .values(reconciliation_required=True, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await flag_db.commit()

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    async def check_and_consume(
        self,
        user_id: str,
        kind: QuotaKind | str,
        amount: int = 1,
        plan_id: Optional[str] = None,
    ) -> ConsumeResult:
        """
        Atomically check the limit and consume ``amount`` units of ``kind``.

        A rejection never mutates counters. Unlimited kinds are always
        allowed but still counted for reporting.

        Args:
            user_id: User ID
            kind: Quota kind ('primary' or 'secondary')
            amount: Units to consume (>= 1)
            plan_id: Plan for a first period when the user has none yet

        Returns:
            ConsumeResult with ``remaining`` None for unlimited kinds

        Raises:
            ValueError: If amount < 1 or kind is unknown
        """
        if amount < 1:
            raise ValueError(f"amount must be >= 1, got {amount}")
        kind = QuotaKind(kind)
        used_col, limit_col = _columns(kind)

        # A second pass covers a period that rolled between ensure and update
        for _ in range(2):
            now = utcnow()
            entry = await self.ensure_current_period(user_id, plan_id, now)

            result = await self.db.execute(
                update(UsageLedgerEntry)
                .where(
                    UsageLedgerEntry.id == entry.id,
                    UsageLedgerEntry.is_current.is_(True),
                    UsageLedgerEntry.reconciliation_required.is_(False),
                    UsageLedgerEntry.period_end > now,
                    or_(limit_col.is_(None), used_col + amount <= limit_col),
                    *_counters_non_negative(),
                )
                .values({used_col.key: used_col + amount, "updated_at": now})
                .execution_options(synchronize_session=False)
            )
            entry = await self._reload(entry.id)

            if result.rowcount == 1:
                return ConsumeResult(
                    allowed=True, remaining=remaining_for(entry, kind), kind=kind
                )

            still_current = (
                entry.is_current
                and not entry.reconciliation_required
                and ensure_utc(entry.period_end) > now
            )
            if still_current:
                logger.info(
                    f"Quota exceeded for user {user_id}: {kind.value} "
                    f"{getattr(entry, used_col.key)}/{getattr(entry, limit_col.key)}",
                    extra={"user_id": user_id, "kind": kind.value},
                )
                return ConsumeResult(
                    allowed=False, remaining=remaining_for(entry, kind), kind=kind
                )

        raise TransientStoreError(
            f"Usage period for user {user_id} kept changing during consumption"
        )

    async def release(
        self, user_id: str, kind: QuotaKind | str, amount: int = 1
    ) -> bool:
        """
        Compensating decrement after a failed generation.

        Never drives a counter below zero. Returns False when nothing was
        released (counter already lower than ``amount`` or entry flagged).

        Raises:
            UsageLedgerNotFound: If the user has no current entry
            InvariantViolation: The entry holds negative counters (it is
                flagged before raising)
        """
        if amount < 1:
            raise ValueError(f"amount must be >= 1, got {amount}")
        kind = QuotaKind(kind)
        used_col, _ = _columns(kind)
        entry = await self._require_current(user_id)

        if entry.reconciliation_required:
            logger.warning(
                f"Release skipped for user {user_id}: entry awaiting reconciliation",
                extra={"user_id": user_id, "kind": kind.value},
            )
            return False
        await self._check_invariants(entry)

        result = await self.db.execute(
            update(UsageLedgerEntry)
            .where(
                UsageLedgerEntry.id == entry.id,
                UsageLedgerEntry.reconciliation_required.is_(False),
                used_col >= amount,
                *_counters_non_negative(),
            )
            .values({used_col.key: used_col - amount, "updated_at": utcnow()})
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount == 1
        if released:
            logger.info(
                f"Released {amount} {kind.value} unit(s) for user {user_id}",
                extra={"user_id": user_id, "kind": kind.value},
            )
        else:
            logger.warning(
                f"Nothing to release for user {user_id} ({kind.value}, amount={amount})",
                extra={"user_id": user_id, "kind": kind.value},
            )
        return released

    async def record_overage(self, user_id: str, amount: int = 1) -> OverageResult:
        """
        Bill ``amount`` primary units beyond the exhausted base limit.

        Allowed only on plans with a bounded overage allowance and only
        once the base primary quota is used up. Each unit accrues
        ``overage_price_cents``.

        Returns:
            OverageResult; rejected attempts carry a ``reason`` and do not
            change any counter
        """
        if amount < 1:
            raise ValueError(f"amount must be >= 1, got {amount}")

        now = utcnow()
        entry = await self.ensure_current_period(user_id, now=now)

        if entry.max_overage <= 0 or entry.primary_limit is None:
            return OverageResult(
                allowed=False,
                overage_remaining=0,
                charge_accrued_cents=entry.overage_charge_cents,
                reason="plan does not allow overage",
            )

        charge = amount * self.settings.overage_price_cents
        result = await self.db.execute(
            update(UsageLedgerEntry)
            .where(
                UsageLedgerEntry.id == entry.id,
                UsageLedgerEntry.is_current.is_(True),
                UsageLedgerEntry.reconciliation_required.is_(False),
                UsageLedgerEntry.primary_used >= UsageLedgerEntry.primary_limit,
                UsageLedgerEntry.overage_used + amount <= UsageLedgerEntry.max_overage,
                *_counters_non_negative(),
            )
            .values(
                overage_used=UsageLedgerEntry.overage_used + amount,
                overage_charge_cents=UsageLedgerEntry.overage_charge_cents + charge,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        entry = await self._reload(entry.id)
        overage_remaining = max(0, entry.max_overage - entry.overage_used)

        if result.rowcount == 1:
            logger.info(
                f"Recorded overage for user {user_id}: {entry.overage_used}/{entry.max_overage}",
                extra={"user_id": user_id},
            )
            return OverageResult(
                allowed=True,
                overage_remaining=overage_remaining,
                charge_accrued_cents=entry.overage_charge_cents,
            )

        if entry.primary_used < entry.primary_limit:
            reason = "base quota not exhausted"
        else:
            reason = "overage limit reached"
            logger.warning(
                f"User {user_id} exceeded overage limit: "
                f"{entry.overage_used}+{amount} > {entry.max_overage}",
                extra={"user_id": user_id},
            )
        return OverageResult(
            allowed=False,
            overage_remaining=overage_remaining,
            charge_accrued_cents=entry.overage_charge_cents,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def remaining(self, user_id: str, kind: QuotaKind | str) -> Optional[int]:
        """
        Pure read of the remaining units on the current entry.

        Does not roll an expired period. Returns None for unlimited kinds.

        Raises:
            UsageLedgerNotFound: If the user has no current entry
        """
        entry = await self._require_current(user_id)
        return remaining_for(entry, QuotaKind(kind))

    def _kind_usage(self, entry: UsageLedgerEntry, kind: QuotaKind) -> KindUsage:
        used_col, limit_col = _columns(kind)
        used = getattr(entry, used_col.key)
        limit = getattr(entry, limit_col.key)

        if limit is None:
            return KindUsage(
                kind=kind, used=used, limit=None, remaining=None,
                percentage=0.0, level=UsageLevel.OK,
            )

        percentage = 100.0 if limit == 0 else round(used / limit * 100, 1)
        if used >= limit:
            level = UsageLevel.EXHAUSTED
        elif percentage >= self.settings.usage_critical_threshold * 100:
            level = UsageLevel.CRITICAL
        elif percentage >= self.settings.usage_warning_threshold * 100:
            level = UsageLevel.WARNING
        else:
            level = UsageLevel.OK

        return KindUsage(
            kind=kind,
            used=used,
            limit=limit,
            remaining=max(0, limit - used),
            percentage=percentage,
            level=level,
        )

    async def usage_status(self, user_id: str) -> UsageStatus:
        """
        Report per-kind usage, period bounds and overage for the current period.

        Raises:
            UsageLedgerNotFound: If the user has no current entry
        """
        entry = await self._require_current(user_id)
        primary = self._kind_usage(entry, QuotaKind.PRIMARY)
        secondary = self._kind_usage(entry, QuotaKind.SECONDARY)

        warnings = []
        for usage in (primary, secondary):
            if usage.limit == 0:
                continue
            if usage.level == UsageLevel.EXHAUSTED:
                warnings.append(f"{usage.kind.value} quota exhausted")
            elif usage.level in (UsageLevel.CRITICAL, UsageLevel.WARNING):
                warnings.append(f"{usage.kind.value} quota {usage.percentage:g}% used")
        if entry.max_overage and entry.overage_used >= entry.max_overage:
            warnings.append("overage allowance exhausted")

        return UsageStatus(
            user_id=user_id,
            plan_id=entry.plan_id,
            period_start=ensure_utc(entry.period_start),
            period_end=ensure_utc(entry.period_end),
            primary=primary,
            secondary=secondary,
            overage_used=entry.overage_used,
            max_overage=entry.max_overage,
            overage_charge_cents=entry.overage_charge_cents,
            reconciliation_required=entry.reconciliation_required,
            warnings=warnings,
        )

    async def reconcile(
        self, user_id: str, primary_used: int, secondary_used: int
    ) -> UsageLedgerEntry:
        """
        Manually repair the current entry's counters and clear its flag.

        Operator-only: this is the one path allowed to touch an entry
        marked ``reconciliation_required``.

        Raises:
            ValueError: If a counter is negative
            UsageLedgerNotFound: If the user has no current entry
        """
        if primary_used < 0 or secondary_used < 0:
            raise ValueError("Reconciled counters must be non-negative")

        entry = await self._require_current(user_id)
        await self.db.execute(
            update(UsageLedgerEntry)
            .where(UsageLedgerEntry.id == entry.id)
            .values(
                primary_used=primary_used,
                secondary_used=secondary_used,
                overage_used=max(0, entry.overage_used),
                reconciliation_required=False,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        entry = await self._reload(entry.id)

        logger.warning(
            f"Reconciled usage ledger for user {user_id}: "
            f"primary={primary_used}, secondary={secondary_used}",
            extra={"user_id": user_id},
        )
        return entry
