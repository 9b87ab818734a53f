import calendar
import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlmodel.ext.asyncio.session import AsyncSession

from billing.common.code import ErrCode
from billing.core.audit import AuditAction, AuditEntity, emit_audit_event
from billing.models.subscription import Subscription, SubscriptionStatus
from billing.repos.subscription import SubscriptionRepository
from billing.utils.time import ensure_utc

logger = logging.getLogger(__name__)


def calculate_end_date(now: datetime | None = None) -> datetime:
    """One calendar month after ``now``, clamped to the last day of the target month.

    2026-01-31 -> 2026-02-28, 2028-01-31 -> 2028-02-29, 2026-03-15 -> 2026-04-15.
    """
    now = now or datetime.now(timezone.utc)
    year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
    last_day = calendar.monthrange(year, month)[1]
    return now.replace(year=year, month=month, day=min(now.day, last_day))


class SubscriptionService:
    """Admin lifecycle operations on user subscriptions.

    Every mutation is a conditional update on the status the decision was
    based on, so a concurrent webhook or admin action cannot be overwritten.
    """

    EXTENDABLE = [SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED]
    CANCELLABLE = [SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING]
    MAX_ATTEMPTS = 3

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = SubscriptionRepository(db)

    async def _get(self, subscription_id: UUID) -> Subscription:
        sub = await self.repo.reload(subscription_id)
        if sub is None:
            raise ErrCode.SUBSCRIPTION_NOT_FOUND.with_messages(f"Subscription {subscription_id} not found")
        return sub

    async def extend(self, subscription_id: UUID, days: int, actor_id: str | None = None) -> Subscription:
        """Push ``end_date`` out by ``days`` from max(end_date, now) and make the subscription active.

        This function does NOT commit the transaction.
        """
        if days <= 0:
            raise ErrCode.INVALID_REQUEST.with_messages("days must be positive")

        for _ in range(self.MAX_ATTEMPTS):
            sub = await self._get(subscription_id)
            if sub.status not in self.EXTENDABLE:
                raise ErrCode.SUBSCRIPTION_STATE_CONFLICT.with_messages(
                    f"Cannot extend a {sub.status} subscription",
                )
            now = datetime.now(timezone.utc)
            previous_end = ensure_utc(sub.end_date)
            new_end = max(previous_end, now) + timedelta(days=days)
            updated = await self.repo.compare_and_set(
                subscription_id,
                [sub.status],
                status=SubscriptionStatus.ACTIVE,
                end_date=new_end,
            )
            if updated:
                sub = await self._get(subscription_id)
                logger.info(f"Extended subscription {subscription_id} by {days} days until {new_end.isoformat()}")
                emit_audit_event(
                    AuditAction.SUBSCRIPTION_EXTEND,
                    AuditEntity.SUBSCRIPTION,
                    str(subscription_id),
                    actor_id=actor_id,
                    details={"days": days, "previous_end_date": previous_end.isoformat(), "end_date": new_end.isoformat()},
                )
                return sub
            logger.info(f"Subscription {subscription_id} changed concurrently, retrying extend")

        raise ErrCode.SUBSCRIPTION_STATE_CONFLICT.with_messages("Subscription is being modified concurrently")

    async def cancel(self, subscription_id: UUID, actor_id: str | None = None) -> Subscription:
        """Cancel an active or pending subscription. Cancelling twice is a no-op.

        This function does NOT commit the transaction.
        """
        for _ in range(self.MAX_ATTEMPTS):
            sub = await self._get(subscription_id)
            if sub.status == SubscriptionStatus.CANCELLED:
                return sub
            if sub.status not in self.CANCELLABLE:
                raise ErrCode.SUBSCRIPTION_STATE_CONFLICT.with_messages(
                    f"Cannot cancel a {sub.status} subscription",
                )
            updated = await self.repo.compare_and_set(
                subscription_id,
                [sub.status],
                status=SubscriptionStatus.CANCELLED,
                auto_renew=False,
            )
            if updated:
                previous_status = sub.status
                sub = await self._get(subscription_id)
                logger.info(f"Cancelled subscription {subscription_id} (was {previous_status})")
                emit_audit_event(
                    AuditAction.SUBSCRIPTION_CANCEL,
                    AuditEntity.SUBSCRIPTION,
                    str(subscription_id),
                    actor_id=actor_id,
                    details={"previous_status": previous_status},
                )
                return sub

        raise ErrCode.SUBSCRIPTION_STATE_CONFLICT.with_messages("Subscription is being modified concurrently")
