"""Pydantic schemas for saved carts and reminder scheduling."""

from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from storefront.core.security import is_valid_email, sanitize_string
from storefront.schemas.common import CamelSchema

MAX_CART_ITEMS = 10
MAX_ITEM_QUANTITY = 10


class CartItem(CamelSchema):
    """One line of a saved cart."""

    offer_id: str
    name: str | None = None
    price_label: str | None = None
    quantity: int = 1

    @field_validator("offer_id", mode="before")
    @classmethod
    def clean_offer_id(cls, value: Any) -> str:
        offer_id = sanitize_string(str(value or ""), 100)
        if not offer_id:
            raise ValueError("Invalid cart items")
        return offer_id

    @field_validator("name", mode="before")
    @classmethod
    def clean_name(cls, value: Any) -> str | None:
        if not value:
            return None
        return sanitize_string(str(value), 200) or None

    @field_validator("price_label", mode="before")
    @classmethod
    def clean_price_label(cls, value: Any) -> str | None:
        if not value:
            return None
        return sanitize_string(str(value), 40) or None

    @field_validator("quantity", mode="before")
    @classmethod
    def clamp_quantity(cls, value: Any) -> int:
        try:
            quantity = int(value)
        except (TypeError, ValueError):
            quantity = 1
        return max(1, min(MAX_ITEM_QUANTITY, quantity or 1))


class SaveCartRequest(CamelSchema):
    """Body of POST /cart/reminders."""

    email: str
    token: str | None = None
    items: list[CartItem]
    currency: str = "USD"

    @field_validator("email", mode="before")
    @classmethod
    def clean_email(cls, value: Any) -> str:
        email = sanitize_string(str(value or "").lower().strip(), 254)
        if not is_valid_email(email):
            raise ValueError("Invalid email address")
        return email

    @field_validator("token", mode="before")
    @classmethod
    def clean_token(cls, value: Any) -> str | None:
        if value is None:
            return None
        return sanitize_string(str(value).strip(), 128) or None

    @field_validator("items", mode="before")
    @classmethod
    def cap_items(cls, value: Any) -> Any:
        if not isinstance(value, list) or not value:
            raise ValueError("Cart is empty")
        return value[:MAX_CART_ITEMS]

    @field_validator("currency", mode="before")
    @classmethod
    def clean_currency(cls, value: Any) -> str:
        currency = sanitize_string(str(value or "USD"), 3).upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValueError("Invalid currency")
        return currency


class SaveCartResponse(CamelSchema):
    ok: bool = True
    token: str
    already_converted: bool | None = None


class MarkConvertedRequest(CamelSchema):
    """Body of POST /cart/converted."""

    token: str = Field(min_length=1)

    @field_validator("token", mode="before")
    @classmethod
    def clean_token(cls, value: Any) -> str:
        return sanitize_string(str(value or "").strip(), 128)


class RestoreCartResponse(CamelSchema):
    """Payload used by the cart page to rebuild a saved cart."""

    ok: bool = True
    token: str
    email: str
    currency: str
    converted_at: datetime | None
    items: list[CartItem]
