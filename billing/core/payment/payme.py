"""Payme Merchant API (JSON-RPC 2.0) gateway.

Payme calls the merchant endpoint with ``Authorization: Basic
base64("Paycom:<cashbox key>")`` and one of six methods. Every reply is an
HTTP 200 JSON-RPC envelope; errors travel inside the body.

Transaction lifecycle on the Payme side::

    CreateTransaction  -> state 1   (order stays pending)
    PerformTransaction -> state 2   (order pending -> completed)
    CancelTransaction  -> state -1  (order pending -> failed)
                       -> state -2  (order completed -> refunded)
"""

import base64
import binascii
import hmac
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from billing.configs import configs
from billing.configs.payment import PaymeConfig
from billing.core.audit import AuditAction, AuditEntity, emit_audit_event
from billing.core.payment.ledger import OrderLedger, TransitionRejected
from billing.core.payment.provider import ProviderResponse, SettledOrder, WebhookRequest
from billing.models.payment import (
    Order,
    OrderKind,
    OrderStatus,
    PaymentProviderName,
    PaymentTransaction,
    ProviderTxState,
)

logger = logging.getLogger(__name__)


# JSON-RPC / Payme error codes
UNAUTHORIZED = -32504
METHOD_NOT_FOUND = -32601
INVALID_REQUEST = -32600
SYSTEM_ERROR = -32400
WRONG_AMOUNT = -31001
TRANSACTION_NOT_FOUND = -31003
CANNOT_CANCEL = -31007
CANNOT_PERFORM = -31008
ORDER_NOT_FOUND = -31050

# CancelTransaction reason used when a created transaction times out
REASON_TIMEOUT = 4

_MESSAGES: dict[int, dict[str, str]] = {
    WRONG_AMOUNT: {"ru": "Неверная сумма", "uz": "Noto'g'ri summa", "en": "Incorrect amount"},
    TRANSACTION_NOT_FOUND: {"ru": "Транзакция не найдена", "uz": "Tranzaksiya topilmadi", "en": "Transaction not found"},
    CANNOT_CANCEL: {
        "ru": "Невозможно отменить транзакцию",
        "uz": "Tranzaksiyani bekor qilib bo'lmaydi",
        "en": "Unable to cancel transaction",
    },
    CANNOT_PERFORM: {
        "ru": "Невозможно выполнить операцию",
        "uz": "Amalni bajarib bo'lmaydi",
        "en": "Unable to perform operation",
    },
    ORDER_NOT_FOUND: {
        "ru": "Заказ не найден или уже обрабатывается",
        "uz": "Buyurtma topilmadi yoki band",
        "en": "Order not found or busy",
    },
}


class PaymeError(Exception):
    def __init__(self, code: int, message: Any = None, data: str | None = None) -> None:
        self.code = code
        self.message = message if message is not None else _MESSAGES.get(code, "Error")
        self.data = data
        super().__init__(f"Payme error {code}")

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


def _ms(value: datetime | None) -> int:
    if value is None:
        return 0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def _require(params: dict[str, Any], key: str) -> Any:
    if key not in params or params[key] is None:
        raise PaymeError(INVALID_REQUEST, f"Missing parameter: {key}")
    return params[key]


def _require_int(params: dict[str, Any], key: str) -> int:
    value = _require(params, key)
    if isinstance(value, bool):
        raise PaymeError(INVALID_REQUEST, f"Invalid parameter: {key}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PaymeError(INVALID_REQUEST, f"Invalid parameter: {key}")


class PaymeProvider:
    name = PaymentProviderName.PAYME
    display_name = "Payme"

    def __init__(self, config: PaymeConfig | None = None):
        self._config = config

    @property
    def config(self) -> PaymeConfig:
        return self._config or configs.Payment.Payme

    def is_configured(self) -> bool:
        return bool(self.config.MerchantId and self.config.SecretKey)

    # ==================== Checkout ====================

    def generate_payment_link(self, order_id: UUID, amount: int, return_url: str | None = None) -> str:
        """Hosted checkout URL. ``amount`` is in tiyin."""
        parts = [f"m={self.config.MerchantId}", f"ac.order_id={order_id}", f"a={amount}"]
        if return_url:
            parts.append(f"c={return_url}")
        encoded = base64.b64encode(";".join(parts).encode()).decode()
        return f"{self.config.CheckoutUrl.rstrip('/')}/{encoded}"

    # ==================== Webhook authentication ====================

    def verify_authenticity(self, request: WebhookRequest) -> bool:
        if not self.is_configured():
            logger.warning("Payme webhook received but Payme is not configured")
            return False
        header = next((v for k, v in request.headers.items() if k.lower() == "authorization"), "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "basic" or not token:
            return False
        try:
            decoded = base64.b64decode(token.strip(), validate=True).decode()
        except (binascii.Error, UnicodeDecodeError):
            return False
        login, sep, password = decoded.partition(":")
        if not sep:
            return False
        login_ok = hmac.compare_digest(login.encode(), self.config.Login.encode())
        key_ok = hmac.compare_digest(password.encode(), self.config.SecretKey.encode())
        return login_ok and key_ok

    def unauthorized_response(self, request: WebhookRequest) -> dict[str, Any]:
        return {"error": {"code": UNAUTHORIZED, "message": "Unauthorized"}, "id": request.request_id}

    def system_error_response(self, request: WebhookRequest) -> dict[str, Any]:
        return {"error": {"code": SYSTEM_ERROR, "message": "System error"}, "id": request.request_id}

    # ==================== Webhook dispatch ====================

    async def handle_webhook_event(self, request: WebhookRequest, ledger: OrderLedger) -> ProviderResponse:
        handlers = {
            "CheckPerformTransaction": self._check_perform,
            "CreateTransaction": self._create,
            "PerformTransaction": self._perform,
            "CancelTransaction": self._cancel,
            "CheckTransaction": self._check,
            "GetStatement": self._statement,
        }
        response = ProviderResponse(body={})
        handler = handlers.get(request.method or "")
        try:
            if handler is None:
                raise PaymeError(METHOD_NOT_FOUND, "Method not found", data=request.method)
            result = await handler(request.params or {}, ledger, response)
            response.body = {"result": result, "id": request.request_id}
        except PaymeError as e:
            logger.info(f"Payme {request.method} answered with error {e.code}")
            response.body = {"error": e.to_dict(), "id": request.request_id}
        return response

    # ==================== Helpers ====================

    async def _resolve_order(self, params: dict[str, Any], ledger: OrderLedger) -> tuple[OrderKind, Order]:
        account = params.get("account")
        if not isinstance(account, dict) or not account.get("order_id"):
            raise PaymeError(ORDER_NOT_FOUND, data="order_id")
        found = await ledger.find_order(str(account["order_id"]))
        if found is None:
            raise PaymeError(ORDER_NOT_FOUND, data="order_id")
        return found

    async def _validate_order(self, params: dict[str, Any], ledger: OrderLedger) -> tuple[OrderKind, Order, int]:
        amount = _require_int(params, "amount")
        kind, order = await self._resolve_order(params, ledger)
        if order.status != OrderStatus.PENDING:
            raise PaymeError(ORDER_NOT_FOUND, data="order_id")
        if order.amount != amount:
            tx_id = str(params["id"]) if params.get("id") else None
            ledger.report_amount_mismatch(order.id, kind, order.amount, amount, self.name, tx_id)
            raise PaymeError(WRONG_AMOUNT, data="amount")
        return kind, order, amount

    async def _get_transaction(self, params: dict[str, Any], ledger: OrderLedger) -> PaymentTransaction:
        provider_tx_id = str(_require(params, "id"))
        tx = await ledger.find_provider_transaction(self.name, provider_tx_id)
        if tx is None:
            raise PaymeError(TRANSACTION_NOT_FOUND, data="id")
        return tx

    def _is_expired(self, tx: PaymentTransaction) -> bool:
        started = tx.provider_time or _ms(tx.created_at)
        return _now_ms() - started > self.config.TransactionTimeoutMs

    async def _expire(self, tx: PaymentTransaction, ledger: OrderLedger) -> None:
        """Cancel a timed-out created transaction and fail its order."""
        await ledger.mark_provider_transaction_cancelled(tx, reason=REASON_TIMEOUT)
        await self._fail_order(tx, ledger)
        logger.info(f"Payme transaction {tx.provider_tx_id} timed out and was cancelled")

    async def _fail_order(self, tx: PaymentTransaction, ledger: OrderLedger) -> None:
        try:
            await ledger.transition(
                tx.order_id,
                OrderKind(tx.order_type),
                OrderStatus.PENDING,
                OrderStatus.FAILED,
                provider=self.name,
            )
        except TransitionRejected as e:
            logger.warning(f"Order {tx.order_id} not failed after Payme cancel: {e.reason}")

    @staticmethod
    def _tx_result(tx: PaymentTransaction) -> dict[str, Any]:
        return {
            "create_time": _ms(tx.created_at),
            "perform_time": _ms(tx.performed_at),
            "cancel_time": _ms(tx.cancelled_at),
            "transaction": str(tx.id),
            "state": tx.state,
            "reason": tx.reason,
        }

    # ==================== Methods ====================

    async def _check_perform(self, params: dict[str, Any], ledger: OrderLedger, response: ProviderResponse) -> dict:
        await self._validate_order(params, ledger)
        return {"allow": True}

    async def _create(self, params: dict[str, Any], ledger: OrderLedger, response: ProviderResponse) -> dict:
        provider_tx_id = str(_require(params, "id"))
        provider_time = _require_int(params, "time")

        tx = await ledger.find_provider_transaction(self.name, provider_tx_id)
        if tx is not None:
            if tx.state != ProviderTxState.CREATED:
                raise PaymeError(CANNOT_PERFORM, data="id")
            if self._is_expired(tx):
                await self._expire(tx, ledger)
                raise PaymeError(CANNOT_PERFORM, data="id")
            result = self._tx_result(tx)
            return {"create_time": result["create_time"], "transaction": result["transaction"], "state": tx.state}

        kind, order, amount = await self._validate_order(params, ledger)
        active = await ledger.list_order_transactions(order.id, self.name, state=ProviderTxState.CREATED)
        if any(other.provider_tx_id != provider_tx_id for other in active):
            raise PaymeError(ORDER_NOT_FOUND, data="order_id")

        tx = await ledger.open_provider_transaction(
            order.id, kind, self.name, provider_tx_id, amount, provider_time=provider_time
        )
        return {"create_time": _ms(tx.created_at), "transaction": str(tx.id), "state": tx.state}

    async def _perform(self, params: dict[str, Any], ledger: OrderLedger, response: ProviderResponse) -> dict:
        tx = await self._get_transaction(params, ledger)

        if tx.state == ProviderTxState.PERFORMED:
            return {"transaction": str(tx.id), "perform_time": _ms(tx.performed_at), "state": tx.state}
        if tx.state != ProviderTxState.CREATED:
            raise PaymeError(CANNOT_PERFORM, data="id")
        if self._is_expired(tx):
            await self._expire(tx, ledger)
            raise PaymeError(CANNOT_PERFORM, data="id")

        kind = OrderKind(tx.order_type)
        try:
            result = await ledger.transition(
                tx.order_id,
                kind,
                OrderStatus.PENDING,
                OrderStatus.COMPLETED,
                provider_tx_id=tx.provider_tx_id,
                expected_amount=tx.amount,
                provider=self.name,
            )
        except TransitionRejected as e:
            raise PaymeError(WRONG_AMOUNT if e.reason == "amount_mismatch" else CANNOT_PERFORM, data="id")

        tx = await ledger.mark_provider_transaction_performed(tx)
        if result.applied:
            response.settled.append(SettledOrder(order_id=tx.order_id, kind=kind))
        return {"transaction": str(tx.id), "perform_time": _ms(tx.performed_at), "state": tx.state}

    async def _cancel(self, params: dict[str, Any], ledger: OrderLedger, response: ProviderResponse) -> dict:
        tx = await self._get_transaction(params, ledger)
        reason = params.get("reason")

        if tx.state == ProviderTxState.CREATED:
            tx = await ledger.mark_provider_transaction_cancelled(tx, reason=reason)
            await self._fail_order(tx, ledger)
        elif tx.state == ProviderTxState.PERFORMED:
            try:
                await ledger.transition(
                    tx.order_id,
                    OrderKind(tx.order_type),
                    OrderStatus.COMPLETED,
                    OrderStatus.REFUNDED,
                    provider_tx_id=tx.provider_tx_id,
                    provider=self.name,
                )
            except TransitionRejected as e:
                logger.warning(f"Payme cancel of performed transaction {tx.provider_tx_id} rejected: {e.reason}")
                raise PaymeError(CANNOT_CANCEL, data="id")
            tx = await ledger.mark_provider_transaction_cancelled(tx, reason=reason)
            emit_audit_event(
                AuditAction.PAYMENT_REFUND,
                AuditEntity.PAYMENT if tx.order_type == OrderKind.SUBSCRIPTION else AuditEntity.PURCHASE,
                str(tx.order_id),
                details={
                    "amount": tx.amount,
                    "provider": self.name,
                    "provider_tx_id": tx.provider_tx_id,
                    "reason": reason,
                },
            )

        return {"transaction": str(tx.id), "cancel_time": _ms(tx.cancelled_at), "state": tx.state}

    async def _check(self, params: dict[str, Any], ledger: OrderLedger, response: ProviderResponse) -> dict:
        tx = await self._get_transaction(params, ledger)
        return self._tx_result(tx)

    async def _statement(self, params: dict[str, Any], ledger: OrderLedger, response: ProviderResponse) -> dict:
        time_from = _require_int(params, "from")
        time_to = _require_int(params, "to")
        transactions = await ledger.list_provider_transactions(self.name, time_from, time_to)
        return {
            "transactions": [
                {
                    "id": tx.provider_tx_id,
                    "time": tx.provider_time,
                    "amount": tx.amount,
                    "account": {"order_id": str(tx.order_id)},
                    **self._tx_result(tx),
                }
                for tx in transactions
            ]
        }


payme_provider = PaymeProvider()
