"""Cart save, restore and conversion endpoints used by the storefront."""

import logging

from fastapi import APIRouter, Query, Request

from storefront.core.deps import CartRateLimiterDep, ReminderSchedulerDep
from storefront.core.errors import RateLimitedError
from storefront.core.logging_config import bind_subject
from storefront.core.rate_limit import get_client_ip
from storefront.core.security import generate_token, sanitize_string
from storefront.schemas.cart import (
    CartItem,
    MarkConvertedRequest,
    RestoreCartResponse,
    SaveCartRequest,
    SaveCartResponse,
)
from storefront.schemas.common import OkResponse

logger = logging.getLogger(__name__)

router = APIRouter()


async def _enforce_rate_limit(request: Request, limiter: CartRateLimiterDep) -> None:
    client_ip = get_client_ip(request)
    result = await limiter.check(f"cart:{client_ip}")
    if not result.allowed:
        logger.warning("Cart rate limit hit: ip=%s reset_at=%s", client_ip, result.reset_at)
        raise RateLimitedError("Too many requests", reset_at=result.reset_at)


@router.post("/reminders", response_model=SaveCartResponse, response_model_exclude_none=True)
async def save_cart(
    body: SaveCartRequest,
    request: Request,
    scheduler: ReminderSchedulerDep,
    limiter: CartRateLimiterDep,
) -> SaveCartResponse:
    """Save the cart and schedule its two reminder emails."""
    await _enforce_rate_limit(request, limiter)

    token = body.token or generate_token()
    bind_subject(token)

    session = await scheduler.save_or_update_cart(token, body.email, body.items, body.currency)
    if session.is_converted:
        return SaveCartResponse(token=token, already_converted=True)

    await scheduler.schedule_reminders(session)
    return SaveCartResponse(token=token)


@router.get("/restore", response_model=RestoreCartResponse)
async def restore_cart(
    scheduler: ReminderSchedulerDep,
    token: str = Query(..., min_length=1, max_length=128),
) -> RestoreCartResponse:
    """Return a saved cart so the cart page can rebuild it from a reminder link."""
    token = sanitize_string(token, 128)
    bind_subject(token)

    session = await scheduler.restore_cart(token)
    return RestoreCartResponse(
        token=session.token,
        email=session.email,
        currency=session.currency,
        converted_at=session.converted_at,
        items=[CartItem.model_validate(item) for item in session.items or []],
    )


@router.post("/converted", response_model=OkResponse)
async def mark_converted(
    body: MarkConvertedRequest,
    request: Request,
    scheduler: ReminderSchedulerDep,
    limiter: CartRateLimiterDep,
) -> OkResponse:
    """Record that the cart's purchase completed. Repeating the call is harmless."""
    await _enforce_rate_limit(request, limiter)
    bind_subject(body.token)

    await scheduler.mark_converted(body.token)
    return OkResponse()
