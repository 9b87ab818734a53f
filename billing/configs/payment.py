"""Payment gateway configuration, one section per provider.

A provider is selectable at checkout only when its credentials are set.

Env-var examples (BILLING_ prefix, _ nesting):
  BILLING_PAYMENT_PAYME_MerchantId=5e730e8e0b852a417aa49ceb
  BILLING_PAYMENT_PAYME_SecretKey=...
  BILLING_PAYMENT_CLICK_ServiceId=12345
  BILLING_PAYMENT_CLICK_MerchantId=67890
  BILLING_PAYMENT_CLICK_SecretKey=...
"""

from pydantic import BaseModel, Field


class PaymeConfig(BaseModel):
    MerchantId: str = Field(default="", description="Payme merchant (cashbox) ID")
    SecretKey: str = Field(default="", description="Payme cashbox key used for Basic auth on webhooks")
    Login: str = Field(default="Paycom", description="Basic-auth login Payme sends with every webhook")
    CheckoutUrl: str = Field(
        default="https://checkout.paycom.uz",
        description="Payme checkout base URL (use https://test.paycom.uz for sandbox)",
    )
    TransactionTimeoutMs: int = Field(
        default=43_200_000,
        description="Created transactions older than this are cancelled (12 hours)",
    )


class ClickConfig(BaseModel):
    ServiceId: str = Field(default="", description="Click service ID")
    MerchantId: str = Field(default="", description="Click merchant ID")
    MerchantUserId: str = Field(default="", description="Click merchant user ID (optional)")
    SecretKey: str = Field(default="", description="Click secret key used for sign_string")
    CheckoutUrl: str = Field(
        default="https://my.click.uz/services/pay",
        description="Click hosted payment page",
    )


class PaymentConfig(BaseModel):
    Payme: PaymeConfig = Field(
        default_factory=PaymeConfig,
        description="Payme (JSON-RPC) gateway configuration",
    )
    Click: ClickConfig = Field(
        default_factory=ClickConfig,
        description="Click (signed callback) gateway configuration",
    )
