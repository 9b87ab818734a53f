"""End-to-end tests for the Payme JSON-RPC webhook."""

import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlmodel.ext.asyncio.session import AsyncSession

from billing.models.payment import OrderStatus, Payment, PaymentTransaction, Purchase
from billing.models.subscription import Subscription, SubscriptionStatus
from billing.repos.course_access import CourseAccessRepository

URL = "/api/v1/webhooks/payme"


def _auth(password: str = "test-payme-key") -> dict[str, str]:
    token = base64.b64encode(f"Paycom:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def _now_ms(delta: timedelta = timedelta()) -> int:
    return int((datetime.now(timezone.utc) + delta).timestamp() * 1000)


async def _rpc(client: AsyncClient, method: str, params: dict, headers: dict | None = None, rpc_id: int = 1) -> dict:
    response = await client.post(URL, json={"id": rpc_id, "method": method, "params": params}, headers=headers or _auth())
    assert response.status_code == 200
    return response.json()


async def _status(db: AsyncSession, purchase: Purchase) -> str:
    fresh = await db.get(Purchase, purchase.id, populate_existing=True)
    assert fresh is not None
    return fresh.status


@pytest.mark.integration
class TestPaymeWebhook:
    async def test_happy_path_settles_and_grants_once(
        self, async_client: AsyncClient, db_session: AsyncSession, make_purchase
    ) -> None:
        purchase = await make_purchase(user_id="payme-user", quantity=1, amount=1_500_000)
        account = {"order_id": str(purchase.id)}

        check = await _rpc(async_client, "CheckPerformTransaction", {"amount": 1_500_000, "account": account})
        assert check["result"] == {"allow": True}

        created = await _rpc(
            async_client,
            "CreateTransaction",
            {"id": "pm-1", "time": _now_ms(), "amount": 1_500_000, "account": account},
        )
        assert created["result"]["state"] == 1
        assert await _status(db_session, purchase) == OrderStatus.PENDING

        performed = await _rpc(async_client, "PerformTransaction", {"id": "pm-1"})
        assert performed["result"]["state"] == 2
        assert performed["result"]["perform_time"] > 0
        assert await _status(db_session, purchase) == OrderStatus.COMPLETED

        again = await _rpc(async_client, "PerformTransaction", {"id": "pm-1"})
        assert again["result"]["state"] == 2

        balance = await CourseAccessRepository(db_session).get_balance("payme-user")
        assert balance is not None
        await db_session.refresh(balance)
        assert balance.roadmap_generations == 1

        checked = await _rpc(async_client, "CheckTransaction", {"id": "pm-1"})
        assert checked["result"]["state"] == 2
        assert checked["result"]["transaction"] == created["result"]["transaction"]

    async def test_subscription_checkout_settles_and_activates(
        self, async_client: AsyncClient, db_session: AsyncSession, make_plan
    ) -> None:
        plan = await make_plan(price_monthly=150_000)
        checkout = await async_client.post(
            "/api/v1/checkout",
            json={"orderType": "subscription", "provider": "payme", "planId": plan.id},
            headers={"X-User-Id": "sub-user"},
        )
        assert checkout.status_code == 201
        order_id = checkout.json()["orderId"]
        account = {"order_id": order_id}

        created = await _rpc(
            async_client,
            "CreateTransaction",
            {"id": "pm-sub", "time": _now_ms(), "amount": 150_000, "account": account},
        )
        assert created["result"]["state"] == 1
        performed = await _rpc(async_client, "PerformTransaction", {"id": "pm-sub"})
        assert performed["result"]["state"] == 2

        payment = await db_session.get(Payment, UUID(order_id), populate_existing=True)
        assert payment is not None
        assert payment.status == OrderStatus.COMPLETED
        assert payment.provider_tx_id == "pm-sub"
        subscription = await db_session.get(Subscription, payment.subscription_id, populate_existing=True)
        assert subscription is not None
        assert subscription.user_id == "sub-user"
        assert subscription.status == SubscriptionStatus.ACTIVE

    async def test_forged_signature_leaves_order_pending(
        self, async_client: AsyncClient, db_session: AsyncSession, make_purchase
    ) -> None:
        purchase = await make_purchase()
        body = await _rpc(
            async_client,
            "CreateTransaction",
            {"id": "pm-forged", "time": _now_ms(), "amount": purchase.amount, "account": {"order_id": str(purchase.id)}},
            headers=_auth("guessed"),
            rpc_id=99,
        )
        assert body == {"error": {"code": -32504, "message": "Unauthorized"}, "id": 99}
        assert await _status(db_session, purchase) == OrderStatus.PENDING

    async def test_wrong_amount(self, async_client: AsyncClient, make_purchase) -> None:
        purchase = await make_purchase(amount=1_500_000)
        with patch("billing.core.payment.ledger.emit_audit_event") as audit:
            body = await _rpc(
                async_client, "CheckPerformTransaction", {"amount": 100, "account": {"order_id": str(purchase.id)}}
            )

        assert body["error"]["code"] == -31001
        audit.assert_called_once()
        assert audit.call_args.args[0] == "payment_amount_mismatch"
        assert audit.call_args.args[2] == str(purchase.id)
        assert audit.call_args.kwargs["details"]["recorded_amount"] == 1_500_000
        assert audit.call_args.kwargs["details"]["claimed_amount"] == 100

    async def test_unknown_order(self, async_client: AsyncClient) -> None:
        body = await _rpc(async_client, "CheckPerformTransaction", {"amount": 100, "account": {"order_id": "nope"}})
        assert body["error"]["code"] == -31050

    async def test_second_transaction_on_same_order_rejected(self, async_client: AsyncClient, make_purchase) -> None:
        purchase = await make_purchase()
        params = {"time": _now_ms(), "amount": purchase.amount, "account": {"order_id": str(purchase.id)}}
        await _rpc(async_client, "CreateTransaction", {"id": "pm-a", **params})

        body = await _rpc(async_client, "CreateTransaction", {"id": "pm-b", **params})
        assert body["error"]["code"] == -31050

    async def test_expired_transaction_is_cancelled(
        self, async_client: AsyncClient, db_session: AsyncSession, make_purchase
    ) -> None:
        purchase = await make_purchase()
        await _rpc(
            async_client,
            "CreateTransaction",
            {
                "id": "pm-old",
                "time": _now_ms(-timedelta(hours=13)),
                "amount": purchase.amount,
                "account": {"order_id": str(purchase.id)},
            },
        )

        body = await _rpc(async_client, "PerformTransaction", {"id": "pm-old"})

        assert body["error"]["code"] == -31008
        checked = await _rpc(async_client, "CheckTransaction", {"id": "pm-old"})
        assert checked["result"]["state"] == -1
        assert checked["result"]["reason"] == 4
        assert await _status(db_session, purchase) == OrderStatus.FAILED

    async def test_cancel_created_fails_order(
        self, async_client: AsyncClient, db_session: AsyncSession, make_purchase
    ) -> None:
        purchase = await make_purchase()
        await _rpc(
            async_client,
            "CreateTransaction",
            {"id": "pm-c", "time": _now_ms(), "amount": purchase.amount, "account": {"order_id": str(purchase.id)}},
        )

        body = await _rpc(async_client, "CancelTransaction", {"id": "pm-c", "reason": 3})

        assert body["result"]["state"] == -1
        assert await _status(db_session, purchase) == OrderStatus.FAILED

    async def test_cancel_performed_refunds_order(
        self, async_client: AsyncClient, db_session: AsyncSession, make_purchase
    ) -> None:
        purchase = await make_purchase()
        await _rpc(
            async_client,
            "CreateTransaction",
            {"id": "pm-r", "time": _now_ms(), "amount": purchase.amount, "account": {"order_id": str(purchase.id)}},
        )
        await _rpc(async_client, "PerformTransaction", {"id": "pm-r"})

        with patch("billing.core.payment.payme.emit_audit_event") as audit:
            body = await _rpc(async_client, "CancelTransaction", {"id": "pm-r", "reason": 5})

        assert body["result"]["state"] == -2
        assert await _status(db_session, purchase) == OrderStatus.REFUNDED
        tx = await db_session.get(PaymentTransaction, int(body["result"]["transaction"]), populate_existing=True)
        assert tx is not None
        assert tx.reason == 5
        audit.assert_called_once()
        assert audit.call_args.args[:3] == ("payment_refund", "purchase", str(purchase.id))
        assert audit.call_args.kwargs["details"] == {
            "amount": purchase.amount,
            "provider": "payme",
            "provider_tx_id": "pm-r",
            "reason": 5,
        }

    async def test_get_statement(self, async_client: AsyncClient, make_purchase) -> None:
        purchase = await make_purchase()
        created_at = _now_ms()
        await _rpc(
            async_client,
            "CreateTransaction",
            {"id": "pm-s", "time": created_at, "amount": purchase.amount, "account": {"order_id": str(purchase.id)}},
        )

        body = await _rpc(async_client, "GetStatement", {"from": created_at - 1000, "to": created_at + 1000})

        assert [tx["id"] for tx in body["result"]["transactions"]] == ["pm-s"]
        assert body["result"]["transactions"][0]["account"] == {"order_id": str(purchase.id)}

    async def test_transaction_not_found(self, async_client: AsyncClient) -> None:
        body = await _rpc(async_client, "CheckTransaction", {"id": "missing"})
        assert body["error"]["code"] == -31003

    async def test_malformed_body(self, async_client: AsyncClient) -> None:
        response = await async_client.post(URL, content=b"{not json", headers={**_auth(), "Content-Type": "application/json"})
        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32600

    async def test_malformed_body_without_auth(self, async_client: AsyncClient) -> None:
        response = await async_client.post(URL, content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.json()["error"]["code"] == -32504
