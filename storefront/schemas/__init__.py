"""Pydantic schemas for request/response validation."""

from storefront.schemas.cart import (
    CartItem,
    MarkConvertedRequest,
    RestoreCartResponse,
    SaveCartRequest,
    SaveCartResponse,
)
from storefront.schemas.common import ErrorResponse, HealthResponse, OkResponse
from storefront.schemas.discount import (
    DiscountQuoteResponse,
    DiscountValidateRequest,
    ReviewDiscountResponse,
    ReviewRequest,
)

__all__ = [
    "CartItem",
    "DiscountQuoteResponse",
    "DiscountValidateRequest",
    "ErrorResponse",
    "HealthResponse",
    "MarkConvertedRequest",
    "OkResponse",
    "RestoreCartResponse",
    "ReviewDiscountResponse",
    "ReviewRequest",
    "SaveCartRequest",
    "SaveCartResponse",
]
