"""Order ledger: the only writer of settlement status.

Every status change is a single conditional UPDATE scoped by id and the
expected current status. A provider retrying a webhook that already landed
finds the order in the target state and gets ``applied=False``; any other
mismatch is rejected without touching the row.
"""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlmodel.ext.asyncio.session import AsyncSession

from billing.common.code import ErrCode, ErrCodeError
from billing.core.audit import AuditAction, AuditEntity, emit_audit_event
from billing.models.payment import (
    LEGAL_TRANSITIONS,
    Order,
    OrderKind,
    OrderStatus,
    Payment,
    PaymentCreate,
    PaymentTransaction,
    ProviderTxState,
    Purchase,
    PurchaseCreate,
    PurchaseType,
)
from billing.repos.payment import PaymentRepository

logger = logging.getLogger(__name__)


class TransitionRejected(ErrCodeError):
    """A status change the ledger refused to apply. The row is untouched."""

    def __init__(self, order_id: UUID, current: str | None, reason: str, detail: str = "") -> None:
        self.order_id = order_id
        self.current = current
        self.reason = reason
        message = f"Order {order_id} transition rejected: {reason}"
        if current is not None:
            message += f" (current status: {current})"
        super().__init__(ErrCode.TRANSITION_REJECTED, (message, detail))


@dataclass(frozen=True)
class TransitionResult:
    order: Order
    applied: bool


@dataclass(frozen=True)
class OrderStatusView:
    status: str
    order_type: OrderKind
    amount: int


class OrderLedger:
    """Owns the Payment/Purchase lifecycle and the provider transaction journal.

    Does NOT commit; callers own the transaction boundary.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = PaymentRepository(db)

    # ==================== Order creation ====================

    async def create_pending_payment(self, subscription_id: UUID, amount: int, currency: str) -> Payment:
        return await self.repo.create_payment(
            PaymentCreate(subscription_id=subscription_id, amount=amount, currency=currency)
        )

    async def create_pending_purchase(
        self,
        user_id: str,
        purchase_type: PurchaseType,
        quantity: int,
        amount: int,
        currency: str,
        metadata: dict[str, Any] | None = None,
    ) -> Purchase:
        return await self.repo.create_purchase(
            PurchaseCreate(
                user_id=user_id,
                type=purchase_type,
                quantity=quantity,
                amount=amount,
                currency=currency,
                meta=metadata,
            )
        )

    # ==================== Lookups ====================

    async def find_order(self, order_id: UUID | str) -> tuple[OrderKind, Order] | None:
        """Resolve an order id of either kind. Malformed ids resolve to None."""
        if not isinstance(order_id, UUID):
            try:
                order_id = UUID(str(order_id))
            except ValueError:
                return None
        return await self.repo.find_order(order_id)

    async def get_status(self, order_id: UUID | str) -> OrderStatusView:
        found = await self.find_order(order_id)
        if found is None:
            raise ErrCode.ORDER_NOT_FOUND.with_messages("Order not found")
        kind, order = found
        return OrderStatusView(status=order.status, order_type=kind, amount=order.amount)

    # ==================== Transitions ====================

    async def transition(
        self,
        order_id: UUID,
        kind: OrderKind,
        from_expected: OrderStatus,
        to: OrderStatus,
        provider_tx_id: str | None = None,
        expected_amount: int | None = None,
        provider: str | None = None,
    ) -> TransitionResult:
        """Atomically move an order from ``from_expected`` to ``to``.

        Returns ``applied=False`` when the order is already in ``to`` for the
        same provider transaction (a retried webhook). Raises
        ``TransitionRejected`` for illegal pairs, amount mismatches and any
        other current status.
        """
        if (from_expected, to) not in LEGAL_TRANSITIONS:
            logger.warning(f"Illegal transition requested for order {order_id}: {from_expected} -> {to}")
            raise TransitionRejected(order_id, None, "illegal_transition", f"{from_expected} -> {to}")

        order = await self.repo.get_order(order_id, kind)
        if order is None:
            raise ErrCode.ORDER_NOT_FOUND.with_messages(f"Order {order_id} not found")

        if expected_amount is not None and order.amount != expected_amount:
            self.report_amount_mismatch(order_id, kind, order.amount, expected_amount, provider, provider_tx_id)
            raise TransitionRejected(order_id, order.status, "amount_mismatch")

        applied = await self.repo.compare_and_set_status(
            order_id,
            kind,
            expected=from_expected,
            new=to,
            provider=provider,
            provider_tx_id=provider_tx_id,
        )
        current = await self.repo.reload_order(order_id, kind)
        if current is None:
            raise ErrCode.ORDER_NOT_FOUND.with_messages(f"Order {order_id} not found")

        if applied:
            logger.info(f"Order {order_id} ({kind}) {from_expected} -> {to} via {provider or 'admin'} {provider_tx_id or ''}")
            return TransitionResult(order=current, applied=True)

        if current.status == to and (
            provider_tx_id is None or current.provider_tx_id is None or current.provider_tx_id == provider_tx_id
        ):
            logger.info(f"Order {order_id} already {to}; duplicate delivery acknowledged")
            return TransitionResult(order=current, applied=False)

        logger.warning(
            f"Rejected transition for order {order_id}: expected {from_expected}, found {current.status}, wanted {to}"
        )
        raise TransitionRejected(order_id, current.status, "status_mismatch")

    @staticmethod
    def report_amount_mismatch(
        order_id: UUID,
        kind: OrderKind,
        recorded: int,
        claimed: int,
        provider: str | None = None,
        provider_tx_id: str | None = None,
    ) -> None:
        """Log and audit a provider claiming an amount other than the one on record."""
        logger.error(f"Amount mismatch on order {order_id}: recorded {recorded}, provider claims {claimed}")
        emit_audit_event(
            AuditAction.PAYMENT_AMOUNT_MISMATCH,
            AuditEntity.PAYMENT if kind == OrderKind.SUBSCRIPTION else AuditEntity.PURCHASE,
            str(order_id),
            details={
                "recorded_amount": recorded,
                "claimed_amount": claimed,
                "provider": provider,
                "provider_tx_id": provider_tx_id,
            },
        )

    # ==================== Provider journal ====================

    async def open_provider_transaction(
        self,
        order_id: UUID,
        kind: OrderKind,
        provider: str,
        provider_tx_id: str,
        amount: int,
        provider_time: int = 0,
    ) -> PaymentTransaction:
        return await self.repo.create_transaction(
            PaymentTransaction(
                order_id=order_id,
                order_type=kind,
                provider=provider,
                provider_tx_id=provider_tx_id,
                amount=amount,
                state=ProviderTxState.CREATED,
                provider_time=provider_time,
            )
        )

    async def find_provider_transaction(self, provider: str, provider_tx_id: str) -> PaymentTransaction | None:
        return await self.repo.get_transaction_by_provider_id(provider, provider_tx_id)

    async def get_provider_transaction(self, transaction_id: int) -> PaymentTransaction | None:
        return await self.repo.get_transaction(transaction_id)

    async def list_order_transactions(
        self, order_id: UUID, provider: str, state: int | None = None
    ) -> list[PaymentTransaction]:
        return await self.repo.list_order_transactions(order_id, provider, state)

    async def mark_provider_transaction_performed(self, transaction: PaymentTransaction) -> PaymentTransaction:
        return await self.repo.set_transaction_state(transaction, ProviderTxState.PERFORMED)

    async def mark_provider_transaction_cancelled(
        self, transaction: PaymentTransaction, reason: int | None = None
    ) -> PaymentTransaction:
        state = (
            ProviderTxState.CANCELLED_AFTER_PERFORM
            if transaction.state == ProviderTxState.PERFORMED
            else ProviderTxState.CANCELLED
        )
        return await self.repo.set_transaction_state(transaction, state, reason=reason)

    async def list_provider_transactions(self, provider: str, time_from: int, time_to: int) -> list[PaymentTransaction]:
        return await self.repo.list_transactions_in_range(provider, time_from, time_to)
