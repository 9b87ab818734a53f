"""Unit tests for Payme checkout links and webhook Basic auth."""

import base64
from uuid import uuid4

import pytest

from billing.configs.payment import PaymeConfig
from billing.core.payment.payme import PaymeProvider
from billing.core.payment.provider import WebhookRequest


def _basic(login: str, password: str) -> dict[str, str]:
    token = base64.b64encode(f"{login}:{password}".encode()).decode()
    return {"authorization": f"Basic {token}"}


class TestPaymeProvider:
    @pytest.fixture
    def provider(self) -> PaymeProvider:
        return PaymeProvider(PaymeConfig(MerchantId="merchant-1", SecretKey="s3cret", CheckoutUrl="https://test.paycom.uz"))

    def test_payment_link_encodes_params(self, provider: PaymeProvider) -> None:
        order_id = uuid4()
        url = provider.generate_payment_link(order_id, 150_000, "https://app.example/done")

        assert url.startswith("https://test.paycom.uz/")
        decoded = base64.b64decode(url.rsplit("/", 1)[1]).decode()
        assert decoded == f"m=merchant-1;ac.order_id={order_id};a=150000;c=https://app.example/done"

    def test_payment_link_without_return_url(self, provider: PaymeProvider) -> None:
        url = provider.generate_payment_link(uuid4(), 100)
        decoded = base64.b64decode(url.rsplit("/", 1)[1]).decode()
        assert ";c=" not in decoded

    def test_accepts_valid_credentials(self, provider: PaymeProvider) -> None:
        assert provider.verify_authenticity(WebhookRequest(headers=_basic("Paycom", "s3cret"), params={}))

    def test_header_name_is_case_insensitive(self, provider: PaymeProvider) -> None:
        headers = {"Authorization": _basic("Paycom", "s3cret")["authorization"]}
        assert provider.verify_authenticity(WebhookRequest(headers=headers, params={}))

    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"authorization": "Bearer abc"},
            {"authorization": "Basic not-base64!!"},
            _basic("Paycom", "wrong"),
            _basic("Other", "s3cret"),
        ],
    )
    def test_rejects_bad_credentials(self, provider: PaymeProvider, headers: dict[str, str]) -> None:
        assert not provider.verify_authenticity(WebhookRequest(headers=headers, params={}))

    def test_unconfigured_provider_rejects_everything(self) -> None:
        provider = PaymeProvider(PaymeConfig(MerchantId="", SecretKey=""))
        assert not provider.is_configured()
        assert not provider.verify_authenticity(WebhookRequest(headers=_basic("Paycom", ""), params={}))

    def test_unauthorized_response_echoes_id(self, provider: PaymeProvider) -> None:
        body = provider.unauthorized_response(WebhookRequest(headers={}, params={}, request_id=42))
        assert body == {"error": {"code": -32504, "message": "Unauthorized"}, "id": 42}

    async def test_unknown_method(self, provider: PaymeProvider) -> None:
        request = WebhookRequest(headers={}, params={}, method="DoSomething", request_id=7)
        response = await provider.handle_webhook_event(request, ledger=None)  # type: ignore[arg-type]
        assert response.body["error"]["code"] == -32601
        assert response.body["id"] == 7
        assert response.settled == []
