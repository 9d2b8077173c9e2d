"""Discount code validation endpoint used at checkout."""

from fastapi import APIRouter

from storefront.core.deps import DiscountEngineDep
from storefront.core.logging_config import bind_subject
from storefront.schemas.discount import DiscountQuoteResponse, DiscountValidateRequest
from storefront.services.discount_service import compute_floor_clamped_discount

router = APIRouter()


@router.post("/validate", response_model=DiscountQuoteResponse)
async def validate_discount(
    body: DiscountValidateRequest,
    discounts: DiscountEngineDep,
) -> DiscountQuoteResponse:
    """Check a code against this purchase and quote the floor-clamped discount.

    The code is not consumed; redemption happens when the payment succeeds.
    """
    bind_subject(body.code)

    row = await discounts.validate_for_context(
        body.code,
        applies_to=body.applies_to,
        email=body.email,
        transaction_id=body.transaction_id,
    )
    calc = compute_floor_clamped_discount(body.total_cents, row.percent_off, body.min_total_cents)

    return DiscountQuoteResponse(
        code=row.code,
        percent_off=row.percent_off,
        applies_to=row.applies_to,
        expires_at=row.expires_at,
        original_total_cents=calc.original_total_cents,
        discount_amount_cents=calc.discount_amount_cents,
        discounted_total_cents=calc.discounted_total_cents,
    )
