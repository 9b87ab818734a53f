"""Provider webhook endpoints.

No user authentication: each provider is authenticated by its own scheme
(Payme Basic auth, Click ``sign_string``). Responses are always HTTP 200.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from billing.core.payment.payme import INVALID_REQUEST
from billing.core.payment.provider import WebhookRequest, get_payment_provider
from billing.core.payment.webhook import dispatch_webhook
from billing.infra.database import get_session as get_db_session
from billing.models.payment import PaymentProviderName

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/payme", status_code=200)
async def payme_webhook(request: Request, db: AsyncSession = Depends(get_db_session)) -> dict:
    """Payme Merchant API (JSON-RPC 2.0)."""
    provider = get_payment_provider(PaymentProviderName.PAYME)
    headers = dict(request.headers)

    try:
        payload = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None

    request_id = payload.get("id") if isinstance(payload, dict) else None
    if not isinstance(payload, dict) or not isinstance(payload.get("method"), str):
        context = WebhookRequest(headers=headers, params={}, request_id=request_id)
        if not provider.verify_authenticity(context):
            return provider.unauthorized_response(context)
        logger.warning("Malformed Payme request")
        return {"error": {"code": INVALID_REQUEST, "message": "Invalid request"}, "id": request_id}

    params = payload.get("params")
    context = WebhookRequest(
        headers=headers,
        params=params if isinstance(params, dict) else {},
        method=payload["method"],
        request_id=request_id,
    )
    logger.info(f"Payme webhook: {context.method}")
    return await dispatch_webhook(provider, context, db)


@router.post("/click", status_code=200)
async def click_webhook(request: Request, db: AsyncSession = Depends(get_db_session)) -> dict:
    """Click SHOP API Prepare/Complete callbacks, as form fields or a flat JSON object."""
    provider = get_payment_provider(PaymentProviderName.CLICK)
    params: dict[str, Any] = {}

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = json.loads(await request.body())
        except (json.JSONDecodeError, UnicodeDecodeError):
            payload = None
        if isinstance(payload, dict):
            params = payload
    else:
        form = await request.form()
        params = {key: value for key, value in form.items() if isinstance(value, str)}

    context = WebhookRequest(headers=dict(request.headers), params=params)
    logger.info(f"Click webhook: action={params.get('action')} click_trans_id={params.get('click_trans_id')}")
    return await dispatch_webhook(provider, context, db)
