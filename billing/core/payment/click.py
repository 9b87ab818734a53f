"""Click SHOP API gateway.

Click calls the merchant twice per payment, with flat form fields:

* ``action=0`` (Prepare): the merchant validates the order and records a
  provider transaction whose id is returned as ``merchant_prepare_id``.
* ``action=1`` (Complete): carries that ``merchant_prepare_id`` back; it must
  resolve to the same ``click_trans_id`` and order before the order settles.

Every callback is signed with ``sign_string``, an MD5 over the callback
fields and the shared secret key. Amounts travel in UZS (``"1500.00"``).
"""

import hashlib
import hmac
import logging
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

from billing.configs import configs
from billing.configs.payment import ClickConfig
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

ACTION_PREPARE = 0
ACTION_COMPLETE = 1

SUCCESS = 0
SIGN_CHECK_FAILED = -1
INCORRECT_AMOUNT = -2
ACTION_NOT_FOUND = -3
ALREADY_PAID = -4
ORDER_NOT_FOUND = -5
TRANSACTION_NOT_FOUND = -6
UPDATE_FAILED = -7
BAD_REQUEST = -8
TRANSACTION_CANCELLED = -9

ERROR_NOTES: dict[int, str] = {
    SUCCESS: "Success",
    SIGN_CHECK_FAILED: "SIGN CHECK FAILED!",
    INCORRECT_AMOUNT: "Incorrect parameter amount",
    ACTION_NOT_FOUND: "Action not found",
    ALREADY_PAID: "Already paid",
    ORDER_NOT_FOUND: "Order not found",
    TRANSACTION_NOT_FOUND: "Transaction does not exist",
    UPDATE_FAILED: "Failed to update order",
    BAD_REQUEST: "Error in request from click",
    TRANSACTION_CANCELLED: "Transaction cancelled",
}

REQUIRED_FIELDS = ("click_trans_id", "service_id", "merchant_trans_id", "amount", "action", "sign_time", "sign_string")


class ClickError(Exception):
    def __init__(self, code: int) -> None:
        self.code = code
        super().__init__(ERROR_NOTES.get(code, "Error"))


def _field(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    return "" if value is None else str(value)


def _to_tiyin(amount: str) -> int:
    """``"1500.00"`` UZS -> 150000 tiyin."""
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise ClickError(BAD_REQUEST)
    if not value.is_finite():
        raise ClickError(BAD_REQUEST)
    return int((value * 100).to_integral_value())


def format_uzs(amount: int) -> str:
    """150000 tiyin -> ``"1500.00"``."""
    return f"{amount // 100}.{amount % 100:02d}"


class ClickProvider:
    name = PaymentProviderName.CLICK
    display_name = "Click"

    def __init__(self, config: ClickConfig | None = None):
        self._config = config

    @property
    def config(self) -> ClickConfig:
        return self._config or configs.Payment.Click

    def is_configured(self) -> bool:
        return bool(self.config.ServiceId and self.config.MerchantId and self.config.SecretKey)

    # ==================== Checkout ====================

    def generate_payment_link(self, order_id: UUID, amount: int, return_url: str | None = None) -> str:
        """Hosted payment page URL. ``amount`` is in tiyin and rendered in UZS."""
        query: dict[str, str] = {
            "service_id": self.config.ServiceId,
            "merchant_id": self.config.MerchantId,
            "amount": format_uzs(amount),
            "transaction_param": str(order_id),
        }
        if self.config.MerchantUserId:
            query["merchant_user_id"] = self.config.MerchantUserId
        if return_url:
            query["return_url"] = return_url
        return f"{self.config.CheckoutUrl}?{urlencode(query)}"

    # ==================== Webhook authentication ====================

    def missing_fields(self, params: dict[str, Any]) -> list[str]:
        missing = [key for key in REQUIRED_FIELDS if _field(params, key) == ""]
        if _field(params, "action") == str(ACTION_COMPLETE) and _field(params, "merchant_prepare_id") == "":
            missing.append("merchant_prepare_id")
        return missing

    def compute_signature(self, params: dict[str, Any]) -> str:
        action = _field(params, "action")
        prepare_id = _field(params, "merchant_prepare_id") if action == str(ACTION_COMPLETE) else ""
        raw = (
            _field(params, "click_trans_id")
            + _field(params, "service_id")
            + self.config.SecretKey
            + _field(params, "merchant_trans_id")
            + prepare_id
            + _field(params, "amount")
            + action
            + _field(params, "sign_time")
        )
        return hashlib.md5(raw.encode()).hexdigest()

    def verify_authenticity(self, request: WebhookRequest) -> bool:
        if not self.is_configured():
            logger.warning("Click webhook received but Click is not configured")
            return False
        params = request.params
        if self.missing_fields(params):
            return False
        if _field(params, "service_id") != str(self.config.ServiceId):
            return False
        expected = self.compute_signature(params)
        return hmac.compare_digest(expected.encode(), _field(params, "sign_string").lower().encode())

    def unauthorized_response(self, request: WebhookRequest) -> dict[str, Any]:
        code = BAD_REQUEST if self.missing_fields(request.params) else SIGN_CHECK_FAILED
        return self._envelope(request.params, code)

    def system_error_response(self, request: WebhookRequest) -> dict[str, Any]:
        return self._envelope(request.params, UPDATE_FAILED)

    # ==================== Webhook dispatch ====================

    async def handle_webhook_event(self, request: WebhookRequest, ledger: OrderLedger) -> ProviderResponse:
        params = request.params
        response = ProviderResponse(body={})
        extra: dict[str, Any] = {}
        try:
            action = _field(params, "action")
            if action == str(ACTION_PREPARE):
                tx = await self._prepare(params, ledger)
                extra["merchant_prepare_id"] = tx.id
            elif action == str(ACTION_COMPLETE):
                tx = await self._complete(params, ledger, response)
                extra["merchant_confirm_id"] = tx.id
            else:
                raise ClickError(ACTION_NOT_FOUND)
            response.body = self._envelope(params, SUCCESS, **extra)
        except ClickError as e:
            logger.info(f"Click action {params.get('action')} answered with error {e.code}")
            response.body = self._envelope(params, e.code)
        return response

    @staticmethod
    def _envelope(params: dict[str, Any], code: int, **extra: Any) -> dict[str, Any]:
        body: dict[str, Any] = {
            "click_trans_id": params.get("click_trans_id"),
            "merchant_trans_id": params.get("merchant_trans_id"),
        }
        body.update(extra)
        body["error"] = code
        body["error_note"] = ERROR_NOTES.get(code, "Error")
        return body

    # ==================== Actions ====================

    async def _resolve_order(self, params: dict[str, Any], ledger: OrderLedger) -> tuple[OrderKind, Order]:
        found = await ledger.find_order(_field(params, "merchant_trans_id"))
        if found is None:
            raise ClickError(ORDER_NOT_FOUND)
        return found

    @staticmethod
    def _check_order_open(order: Order) -> None:
        if order.status == OrderStatus.COMPLETED:
            raise ClickError(ALREADY_PAID)
        if order.status != OrderStatus.PENDING:
            raise ClickError(TRANSACTION_CANCELLED)

    async def _prepare(self, params: dict[str, Any], ledger: OrderLedger) -> PaymentTransaction:
        kind, order = await self._resolve_order(params, ledger)
        amount = _to_tiyin(_field(params, "amount"))
        click_trans_id = _field(params, "click_trans_id")
        if amount != order.amount:
            ledger.report_amount_mismatch(order.id, kind, order.amount, amount, self.name, click_trans_id)
            raise ClickError(INCORRECT_AMOUNT)

        existing = await ledger.find_provider_transaction(self.name, click_trans_id)
        if existing is not None:
            if existing.order_id != order.id:
                raise ClickError(TRANSACTION_NOT_FOUND)
            if existing.state < 0:
                raise ClickError(TRANSACTION_CANCELLED)
            if existing.state == ProviderTxState.PERFORMED:
                raise ClickError(ALREADY_PAID)
            return existing

        self._check_order_open(order)
        return await ledger.open_provider_transaction(order.id, kind, self.name, click_trans_id, amount)

    async def _complete(self, params: dict[str, Any], ledger: OrderLedger, response: ProviderResponse) -> PaymentTransaction:
        kind, order = await self._resolve_order(params, ledger)
        try:
            prepare_id = int(_field(params, "merchant_prepare_id"))
        except ValueError:
            raise ClickError(TRANSACTION_NOT_FOUND)

        tx = await ledger.get_provider_transaction(prepare_id)
        click_trans_id = _field(params, "click_trans_id")
        if tx is None or tx.provider != self.name or tx.provider_tx_id != click_trans_id or tx.order_id != order.id:
            raise ClickError(TRANSACTION_NOT_FOUND)

        try:
            click_error = int(_field(params, "error") or 0)
        except ValueError:
            raise ClickError(BAD_REQUEST)

        # A pending settlement checks the claimed amount inside the ledger transition.
        amount = _to_tiyin(_field(params, "amount"))
        if amount != tx.amount and (tx.state != ProviderTxState.CREATED or click_error < 0):
            ledger.report_amount_mismatch(order.id, kind, tx.amount, amount, self.name, click_trans_id)
            raise ClickError(INCORRECT_AMOUNT)

        if click_error < 0:
            if tx.state == ProviderTxState.CREATED:
                await ledger.mark_provider_transaction_cancelled(tx)
                try:
                    await ledger.transition(order.id, kind, OrderStatus.PENDING, OrderStatus.FAILED, provider=self.name)
                except TransitionRejected as e:
                    logger.warning(f"Order {order.id} not failed after Click error {click_error}: {e.reason}")
            raise ClickError(TRANSACTION_CANCELLED)

        if tx.state == ProviderTxState.PERFORMED:
            return tx
        if tx.state < 0:
            raise ClickError(TRANSACTION_CANCELLED)

        try:
            result = await ledger.transition(
                order.id,
                kind,
                OrderStatus.PENDING,
                OrderStatus.COMPLETED,
                provider_tx_id=click_trans_id,
                expected_amount=amount,
                provider=self.name,
            )
        except TransitionRejected as e:
            if e.reason == "amount_mismatch":
                raise ClickError(INCORRECT_AMOUNT)
            raise ClickError(ALREADY_PAID if e.current == OrderStatus.COMPLETED else TRANSACTION_CANCELLED)

        tx = await ledger.mark_provider_transaction_performed(tx)
        if result.applied:
            response.settled.append(SettledOrder(order_id=order.id, kind=kind))
        return tx


click_provider = ClickProvider()
