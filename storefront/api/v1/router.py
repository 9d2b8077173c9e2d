"""API v1 router combining all route modules."""

from fastapi import APIRouter

from storefront.api.v1 import cart, discounts, health, reviews

api_router = APIRouter()

# Include health check routes (no prefix)
api_router.include_router(health.router)

# Cart save / restore / conversion (public, rate limited per client IP)
api_router.include_router(
    cart.router,
    prefix="/cart",
    tags=["cart"],
)

# Reviews (requires auth)
api_router.include_router(
    reviews.router,
    prefix="/reviews",
    tags=["reviews"],
)

# Discount code checks at checkout
api_router.include_router(
    discounts.router,
    prefix="/discounts",
    tags=["discounts"],
)
