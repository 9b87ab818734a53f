"""Webhook dispatch: authenticate, apply, commit, then grant.

Providers parse the body regardless of status code, so every outcome,
authentication failures included, is answered with HTTP 200 and the
provider's own envelope.
"""

import logging
from typing import Any

from sqlmodel.ext.asyncio.session import AsyncSession

from billing.configs import configs
from billing.core.payment.entitlement import EntitlementGranter
from billing.core.payment.ledger import OrderLedger
from billing.core.payment.provider import PaymentProvider, WebhookRequest

logger = logging.getLogger(__name__)


async def dispatch_webhook(provider: PaymentProvider, request: WebhookRequest, db: AsyncSession) -> dict[str, Any]:
    if not provider.verify_authenticity(request):
        logger.warning(f"Rejected unauthenticated {provider.name} webhook ({request.method or request.params.get('action')})")
        return provider.unauthorized_response(request)

    try:
        response = await provider.handle_webhook_event(request, OrderLedger(db))
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Error handling {provider.name} webhook: {e}", exc_info=True)
        return provider.system_error_response(request)

    if response.settled:
        granter = EntitlementGranter(db, configs.Pricing)
        for settled in response.settled:
            logger.info(f"{provider.name} settled {settled.kind} {settled.order_id}")
            await granter.grant(settled.order_id, settled.kind)

    return response.body
