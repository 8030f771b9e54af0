from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SnapshotLine(BaseModel):
    """One cart line frozen at checkout time."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    package_id: str = Field(alias="packageId")
    package_name: str = Field(alias="packageName")
    quantity: int = Field(gt=0)
    unit_price_at_checkout: Decimal = Field(alias="unitPriceAtCheckout")
    currency_amount_per_unit: int = Field(alias="currencyAmountPerUnit", ge=0)


class PaymentBreakdown(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    subtotal: Decimal
    discount: Decimal = Decimal("0.00")


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    coupon_code: Optional[str] = Field(default=None, alias="couponCode")


class CartAddRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    package_id: str = Field(alias="packageId")
    quantity: int = Field(default=1, gt=0)


class CartUpdateRequest(BaseModel):
    quantity: int = Field(gt=0)


class CompleteOrderRequest(BaseModel):
    """Status poll body; Stripe clients send paymentIntentId, others externalId."""

    model_config = ConfigDict(populate_by_name=True)

    payment_intent_id: Optional[str] = Field(default=None, alias="paymentIntentId")
    external_id: Optional[str] = Field(default=None, alias="externalId")

    @model_validator(mode="after")
    def _require_one_id(self):
        if not (self.payment_intent_id or self.external_id):
            raise ValueError("paymentIntentId or externalId is required")
        return self

    @property
    def reference(self):
        return self.external_id or self.payment_intent_id
