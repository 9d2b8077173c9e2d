"""Pydantic schemas for reviews, discount codes and discount quotes."""

from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator

from storefront.core.security import sanitize_string
from storefront.schemas.common import CamelSchema


class ReviewRequest(CamelSchema):
    """Body of POST /reviews."""

    transaction_id: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    title: str | None = None
    body: str | None = None

    @field_validator("transaction_id", mode="before")
    @classmethod
    def clean_transaction_id(cls, value: Any) -> str:
        return sanitize_string(str(value or "").strip(), 64)

    @field_validator("title", mode="before")
    @classmethod
    def clean_title(cls, value: Any) -> str | None:
        if not value:
            return None
        return sanitize_string(str(value).strip(), 120) or None

    @field_validator("body", mode="before")
    @classmethod
    def clean_body(cls, value: Any) -> str | None:
        if not value:
            return None
        return sanitize_string(str(value).strip(), 1000) or None


class ReviewDiscountResponse(CamelSchema):
    ok: bool = True
    discount_code: str
    discount_percent_off: int
    email_sent: bool


class DiscountValidateRequest(CamelSchema):
    """Body of POST /discounts/validate."""

    code: str = Field(min_length=1, max_length=64)
    total_cents: int = Field(ge=0)
    min_total_cents: int = Field(default=0, ge=0)
    applies_to: Literal["esim", "cart", "topup"]
    email: str | None = None
    transaction_id: str | None = None


class DiscountQuoteResponse(CamelSchema):
    """A validated code and what it would take off the given total."""

    ok: bool = True
    code: str
    percent_off: int
    applies_to: str
    expires_at: datetime | None
    original_total_cents: int
    discount_amount_cents: int
    discounted_total_cents: int
