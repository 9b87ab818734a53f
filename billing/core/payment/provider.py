"""Payment provider abstraction: protocol + factory.

Lets the checkout orchestrator and the webhook dispatcher work with any
provider (Payme, Click) without knowing the concrete wire protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

from billing.common.code import ErrCode
from billing.models.payment import OrderKind, PaymentProviderName

if TYPE_CHECKING:
    from billing.core.payment.ledger import OrderLedger


@dataclass(frozen=True)
class WebhookRequest:
    """Everything a provider needs to authenticate and decode one callback."""

    headers: dict[str, str]
    params: dict[str, Any]
    method: str | None = None  # JSON-RPC method (Payme)
    request_id: Any = None  # JSON-RPC id, echoed back


@dataclass(frozen=True)
class SettledOrder:
    """An order that this webhook moved from pending to completed."""

    order_id: UUID
    kind: OrderKind


@dataclass
class ProviderResponse:
    """Provider-specific envelope plus the orders newly settled while producing it."""

    body: dict[str, Any]
    settled: list[SettledOrder] = field(default_factory=list)


@runtime_checkable
class PaymentProvider(Protocol):
    """Protocol that all payment providers must satisfy."""

    name: PaymentProviderName
    display_name: str

    def is_configured(self) -> bool: ...

    def generate_payment_link(self, order_id: UUID, amount: int, return_url: str | None = None) -> str: ...

    def verify_authenticity(self, request: WebhookRequest) -> bool: ...

    def unauthorized_response(self, request: WebhookRequest) -> dict[str, Any]: ...

    def system_error_response(self, request: WebhookRequest) -> dict[str, Any]: ...

    async def handle_webhook_event(self, request: WebhookRequest, ledger: OrderLedger) -> ProviderResponse: ...


def get_payment_provider(name: str) -> PaymentProvider:
    """Return the provider registered under ``name``.

    Raises ``UNSUPPORTED_PROVIDER`` for names outside the registry.
    """
    try:
        provider_name = PaymentProviderName(name.lower())
    except ValueError:
        raise ErrCode.UNSUPPORTED_PROVIDER.with_messages(f"Unsupported payment provider: {name}")

    if provider_name == PaymentProviderName.PAYME:
        return _get_payme()
    return _get_click()


def list_payment_providers() -> list[PaymentProvider]:
    return [get_payment_provider(name) for name in PaymentProviderName]


def _get_payme() -> PaymentProvider:
    from billing.core.payment.payme import payme_provider

    return payme_provider


def _get_click() -> PaymentProvider:
    from billing.core.payment.click import click_provider

    return click_provider
