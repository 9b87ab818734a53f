"""Order ledger data access layer: payments, purchases and provider transactions."""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlmodel import col, select, update
from sqlmodel.ext.asyncio.session import AsyncSession

from billing.models.payment import (
    OrderKind,
    OrderStatus,
    Payment,
    PaymentCreate,
    PaymentTransaction,
    Purchase,
    PurchaseCreate,
)
from billing.models.subscription import Subscription

logger = logging.getLogger(__name__)


def _model_for(kind: OrderKind) -> type[Payment] | type[Purchase]:
    return Payment if kind == OrderKind.SUBSCRIPTION else Purchase


class PaymentRepository:
    """Data access layer for orders and the provider transaction journal."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Orders ====================

    async def create_payment(self, data: PaymentCreate) -> Payment:
        """Create a pending subscription payment.

        This function does NOT commit the transaction, but it does flush the session.
        """
        payment = Payment(**data.model_dump(), status=OrderStatus.PENDING)
        self.db.add(payment)
        await self.db.flush()
        await self.db.refresh(payment)
        logger.info("Created payment %s: %s %s", payment.id, payment.amount, payment.currency)
        return payment

    async def create_purchase(self, data: PurchaseCreate) -> Purchase:
        """Create a pending one-time purchase.

        This function does NOT commit the transaction, but it does flush the session.
        """
        purchase = Purchase(**data.model_dump(), status=OrderStatus.PENDING)
        self.db.add(purchase)
        await self.db.flush()
        await self.db.refresh(purchase)
        logger.info("Created purchase %s (%s x%s): %s %s", purchase.id, purchase.type, purchase.quantity, purchase.amount, purchase.currency)
        return purchase

    async def get_payment(self, payment_id: UUID) -> Payment | None:
        return await self.db.get(Payment, payment_id)

    async def get_purchase(self, purchase_id: UUID) -> Purchase | None:
        return await self.db.get(Purchase, purchase_id)

    async def get_order(self, order_id: UUID, kind: OrderKind) -> Payment | Purchase | None:
        return await self.db.get(_model_for(kind), order_id)

    async def find_order(self, order_id: UUID) -> tuple[OrderKind, Payment | Purchase] | None:
        """Resolve an order id to its kind, checking payments first, then purchases."""
        payment = await self.get_payment(order_id)
        if payment is not None:
            return OrderKind.SUBSCRIPTION, payment
        purchase = await self.get_purchase(order_id)
        if purchase is not None:
            return OrderKind.PURCHASE, purchase
        return None

    async def compare_and_set_status(
        self,
        order_id: UUID,
        kind: OrderKind,
        expected: OrderStatus,
        new: OrderStatus,
        provider: str | None = None,
        provider_tx_id: str | None = None,
    ) -> bool:
        """Atomically move an order from ``expected`` to ``new``.

        Returns False when the row is not in ``expected`` (or does not exist).
        This function does NOT commit the transaction.
        """
        model = _model_for(kind)
        values: dict = {"status": new, "updated_at": datetime.now(timezone.utc)}
        if provider is not None:
            values["provider"] = provider
        if provider_tx_id is not None:
            values["provider_tx_id"] = provider_tx_id
        statement = (
            update(model)
            .where(col(model.id) == order_id, col(model.status) == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.exec(statement)  # type: ignore[call-overload]
        return result.rowcount > 0

    async def reload_order(self, order_id: UUID, kind: OrderKind) -> Payment | Purchase | None:
        """Fetch an order bypassing the identity map so a concurrent write is visible."""
        return await self.db.get(_model_for(kind), order_id, populate_existing=True)

    async def list_user_payments(self, user_id: str, statuses: list[str], limit: int = 50) -> list[Payment]:
        """Subscription payments of a user, newest first."""
        result = await self.db.exec(
            select(Payment)
            .join(Subscription, col(Subscription.id) == col(Payment.subscription_id))
            .where(Subscription.user_id == user_id, col(Payment.status).in_(statuses))
            .order_by(col(Payment.created_at).desc())
            .limit(limit)
        )
        return list(result.all())

    async def list_user_purchases(self, user_id: str, statuses: list[str], limit: int = 50) -> list[Purchase]:
        """One-time purchases of a user, newest first."""
        result = await self.db.exec(
            select(Purchase)
            .where(Purchase.user_id == user_id, col(Purchase.status).in_(statuses))
            .order_by(col(Purchase.created_at).desc())
            .limit(limit)
        )
        return list(result.all())

    # ==================== Provider transactions ====================

    async def create_transaction(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """This function does NOT commit the transaction, but it does flush the session."""
        self.db.add(transaction)
        await self.db.flush()
        await self.db.refresh(transaction)
        logger.info(
            "Opened %s transaction %s (#%s) for order %s",
            transaction.provider,
            transaction.provider_tx_id,
            transaction.id,
            transaction.order_id,
        )
        return transaction

    async def get_transaction(self, transaction_id: int) -> PaymentTransaction | None:
        return await self.db.get(PaymentTransaction, transaction_id)

    async def get_transaction_by_provider_id(self, provider: str, provider_tx_id: str) -> PaymentTransaction | None:
        result = await self.db.exec(
            select(PaymentTransaction).where(
                PaymentTransaction.provider == provider,
                PaymentTransaction.provider_tx_id == provider_tx_id,
            )
        )
        return result.one_or_none()

    async def list_order_transactions(self, order_id: UUID, provider: str, state: int | None = None) -> list[PaymentTransaction]:
        statement = select(PaymentTransaction).where(
            PaymentTransaction.order_id == order_id,
            PaymentTransaction.provider == provider,
        )
        if state is not None:
            statement = statement.where(PaymentTransaction.state == state)
        result = await self.db.exec(statement.order_by(col(PaymentTransaction.id)))
        return list(result.all())

    async def list_transactions_in_range(self, provider: str, time_from: int, time_to: int) -> list[PaymentTransaction]:
        """Transactions whose provider timestamp falls in ``[time_from, time_to]``."""
        result = await self.db.exec(
            select(PaymentTransaction)
            .where(
                PaymentTransaction.provider == provider,
                col(PaymentTransaction.provider_time) >= time_from,
                col(PaymentTransaction.provider_time) <= time_to,
            )
            .order_by(col(PaymentTransaction.provider_time))
        )
        return list(result.all())

    async def set_transaction_state(
        self,
        transaction: PaymentTransaction,
        state: int,
        reason: int | None = None,
    ) -> PaymentTransaction:
        """This function does NOT commit the transaction."""
        now = datetime.now(timezone.utc)
        transaction.state = state
        if state > 1:
            transaction.performed_at = now
        elif state < 0:
            transaction.cancelled_at = now
            transaction.reason = reason
        self.db.add(transaction)
        await self.db.flush()
        await self.db.refresh(transaction)
        logger.info("Transaction #%s state -> %s", transaction.id, state)
        return transaction
