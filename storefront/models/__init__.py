"""SQLAlchemy models."""

from storefront.models.base import Base
from storefront.models.cart_session import CartSession, CartState
from storefront.models.discount_code import DiscountCode, DiscountScope
from storefront.models.purchase import Purchase
from storefront.models.review import Review

__all__ = [
    # Base
    "Base",
    # Cart reminders
    "CartSession",
    "CartState",
    # Discounts
    "DiscountCode",
    "DiscountScope",
    # Reviews
    "Review",
    "Purchase",
]
