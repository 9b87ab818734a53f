from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlmodel.ext.asyncio.session import AsyncSession

from billing.core.payment.ledger import OrderLedger
from billing.models.payment import OrderKind, OrderStatus
from billing.models.subscription import Subscription, SubscriptionStatus

BASE = "/api/v1/admin"
ADMIN = {"X-Admin-Secret": "test-admin-secret", "X-User-Id": "admin-1"}


@pytest.mark.integration
class TestAdminAPI:
    async def test_requires_secret(self, async_client: AsyncClient) -> None:
        response = await async_client.post(f"{BASE}/payments/{uuid4()}/refund", headers={"X-Admin-Secret": "nope"})
        assert response.status_code == 401

    async def test_refund_completed_purchase(
        self, async_client: AsyncClient, db_session: AsyncSession, make_purchase
    ) -> None:
        purchase = await make_purchase()
        await OrderLedger(db_session).transition(purchase.id, OrderKind.PURCHASE, OrderStatus.PENDING, OrderStatus.COMPLETED)
        await db_session.commit()

        response = await async_client.post(
            f"{BASE}/payments/{purchase.id}/refund", json={"reason": "customer request"}, headers=ADMIN
        )
        assert response.status_code == 200
        assert response.json()["status"] == "refunded"
        assert response.json()["orderId"] == str(purchase.id)

        again = await async_client.post(f"{BASE}/payments/{purchase.id}/refund", headers=ADMIN)
        assert again.status_code == 409

    async def test_refund_pending_rejected(self, async_client: AsyncClient, make_purchase) -> None:
        purchase = await make_purchase()
        response = await async_client.post(f"{BASE}/payments/{purchase.id}/refund", headers=ADMIN)
        assert response.status_code == 409

    async def test_refund_unknown(self, async_client: AsyncClient) -> None:
        response = await async_client.post(f"{BASE}/payments/{uuid4()}/refund", headers=ADMIN)
        assert response.status_code == 404

    async def test_extend_and_cancel(self, async_client: AsyncClient, db_session: AsyncSession, make_plan) -> None:
        plan = await make_plan()
        sub = Subscription(
            user_id="sub-api",
            plan_id=plan.id,
            status=SubscriptionStatus.EXPIRED,
            end_date=datetime.now(timezone.utc) - timedelta(days=2),
        )
        db_session.add(sub)
        await db_session.commit()

        extended = await async_client.post(f"{BASE}/subscriptions/{sub.id}/extend", json={"days": 30}, headers=ADMIN)
        assert extended.status_code == 200
        assert extended.json()["status"] == "active"

        cancelled = await async_client.post(f"{BASE}/subscriptions/{sub.id}/cancel", headers=ADMIN)
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert cancelled.json()["autoRenew"] is False

        blocked = await async_client.post(f"{BASE}/subscriptions/{sub.id}/extend", json={"days": 1}, headers=ADMIN)
        assert blocked.status_code == 409

    async def test_extend_validates_days(self, async_client: AsyncClient) -> None:
        response = await async_client.post(f"{BASE}/subscriptions/{uuid4()}/extend", json={"days": 0}, headers=ADMIN)
        assert response.status_code == 400
