"""Review submission endpoint."""

from fastapi import APIRouter

from storefront.core.deps import CurrentUser, ReviewServiceDep
from storefront.core.errors import UnauthorizedError
from storefront.core.logging_config import bind_subject
from storefront.schemas.discount import ReviewDiscountResponse, ReviewRequest

router = APIRouter()


@router.post("", response_model=ReviewDiscountResponse)
async def submit_review(
    body: ReviewRequest,
    user: CurrentUser,
    reviews: ReviewServiceDep,
) -> ReviewDiscountResponse:
    """Store the caller's review of their order and email them a discount code."""
    user_id = user.get("sub") or user.get("id")
    if not user_id:
        raise UnauthorizedError("Token has no subject")
    bind_subject(body.transaction_id)

    reward = await reviews.submit_review(
        user_id=str(user_id),
        user_email=user.get("email"),
        transaction_id=body.transaction_id,
        rating=body.rating,
        title=body.title,
        body=body.body,
    )
    return ReviewDiscountResponse(
        discount_code=reward.discount_code,
        discount_percent_off=reward.percent_off,
        email_sent=reward.email_sent,
    )
