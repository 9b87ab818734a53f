from billing.core.payment.ledger import OrderLedger, TransitionRejected, TransitionResult
from billing.core.payment.provider import PaymentProvider, ProviderResponse, WebhookRequest, get_payment_provider

__all__ = [
    "OrderLedger",
    "PaymentProvider",
    "ProviderResponse",
    "TransitionRejected",
    "TransitionResult",
    "WebhookRequest",
    "get_payment_provider",
]
