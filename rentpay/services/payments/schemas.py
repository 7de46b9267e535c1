"""API request/response schemas for the payment endpoints."""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from rentpay.common.config import settings
from rentpay.common.errors import ValidationError


def validate_phone(phone: str | None) -> str:
    """Return `phone` if it matches the configured payer pattern."""

    if not phone:
        raise ValidationError("phone is required")
    if not re.fullmatch(settings.phone_pattern, phone):
        raise ValidationError("Invalid phone number format. Use 2547XXXXXXXX or 2541XXXXXXXX")
    return phone


class ChargeRequest(BaseModel):
    """Payload accepted by `POST /payments/initiate`."""

    phone: str
    amount: int = Field(ge=1)

    @field_validator("phone")
    @classmethod
    def _phone_matches_pattern(cls, value: str) -> str:
        if not re.fullmatch(settings.phone_pattern, value):
            raise ValueError("phone must be a Safaricom number in the form 2547XXXXXXXX or 2541XXXXXXXX")
        return value

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_is_numeric(cls, value):
        # bool is an int subclass; True must not become a 1 KES charge.
        if isinstance(value, bool):
            raise ValueError("amount must be a number")
        return value

    @field_validator("amount")
    @classmethod
    def _amount_within_ceiling(cls, value: int) -> int:
        if value > settings.max_amount:
            raise ValueError(f"amount must not exceed {settings.max_amount}")
        return value


class ChargeResponse(BaseModel):
    """Result of a gateway-accepted push request."""

    checkoutRequestId: str
    responseCode: str
    message: str


class PaymentOut(BaseModel):
    """Public view of one payment record, camelCase on the wire."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, alias_generator=to_camel)

    id: str
    payer_id: str | None = None
    phone: str
    amount: int
    checkout_request_id: str
    mpesa_receipt_number: str | None = None
    transaction_date: datetime | None = None
    result_desc: str | None = None
    status: str
    created_at: datetime
    updated_at: datetime


class PaymentPage(BaseModel):
    """Paginated envelope shared by payer history and the admin listing."""

    status: str = "success"
    data: list[PaymentOut]
    total: int
    page: int
    limit: int
    totalPages: int
