"""Review submission with a single-use thank-you discount."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from storefront.core.config import Settings
from storefront.core.errors import (
    ConflictError,
    ErrorKind,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    error_for,
)
from storefront.core.result import Err, Ok
from storefront.models.discount_code import DiscountScope
from storefront.services.discount_service import DiscountEngine, NewDiscountCode
from storefront.services.email_service import EmailService
from storefront.services.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReviewReward:
    discount_code: str
    percent_off: int
    email_sent: bool


class ReviewService:
    """Stores a purchaser's review and issues their review discount.

    One review per transaction is enforced by the ``reviews.transaction_id``
    unique key and one code per transaction by
    ``discount_codes.created_for_transaction_id``, so a replayed or concurrent
    submission can never mint a second code. A retry for a review that was
    stored without its code completes the reward instead of conflicting.
    """

    def __init__(
        self,
        store: RecordStore,
        discounts: DiscountEngine,
        notifier: EmailService,
        settings: Settings,
    ) -> None:
        self.store = store
        self.discounts = discounts
        self.notifier = notifier
        self.percent_off = settings.review_discount_percent
        self.ttl = timedelta(days=settings.review_discount_ttl_days)
        self.shop_url = settings.base_url.rstrip("/")

    async def _ensure_reward_missing(self, transaction_id: str) -> None:
        """Raise ConflictError unless the stored review's discount was never issued."""
        match await self.store.get_discount_code_for_transaction(transaction_id):
            case Ok(None):
                return
            case Ok(_):
                raise ConflictError("This order has already been reviewed", subject=transaction_id)
            case Err(kind, detail):
                raise error_for(kind, f"Could not load review discount: {detail}", subject=transaction_id)

    async def submit_review(
        self,
        *,
        user_id: str,
        user_email: str | None,
        transaction_id: str,
        rating: int,
        title: str | None = None,
        body: str | None = None,
    ) -> ReviewReward:
        email = (user_email or "").strip().lower()
        if not email:
            raise UnauthorizedError("Authenticated user has no email address")

        match await self.store.get_purchase(transaction_id):
            case Ok(None):
                raise NotFoundError("Purchase not found", subject=transaction_id)
            case Ok(purchase):
                pass
            case Err(kind, detail):
                raise error_for(kind, f"Could not load purchase: {detail}", subject=transaction_id)

        if purchase.customer_email.strip().lower() != email:
            logger.warning("Review rejected: %s is not the purchaser of %s", email, transaction_id)
            raise ForbiddenError("Only the purchaser can review this order", subject=transaction_id)

        inserted = await self.store.insert_review(
            {
                "transaction_id": transaction_id,
                "user_id": user_id,
                "email": email,
                "rating": rating,
                "title": title,
                "body": body,
            }
        )
        match inserted:
            case Ok(_):
                logger.info("Review stored: txn=%s rating=%d", transaction_id, rating)
            case Err(ErrorKind.CONFLICT, _):
                await self._ensure_reward_missing(transaction_id)
                logger.warning(
                    "Review for %s already stored without a discount; issuing it now",
                    transaction_id,
                )
            case Err(kind, detail):
                raise error_for(kind, f"Could not store review: {detail}", subject=transaction_id)

        issued = await self.discounts.create_code(
            NewDiscountCode(
                percent_off=self.percent_off,
                applies_to=DiscountScope.ANY.value,
                created_reason=f"review_{self.percent_off}_percent",
                created_for_transaction_id=transaction_id,
                created_for_email=email,
                expires_at=datetime.now(UTC) + self.ttl,
                prefix="REVIEW",
            )
        )

        sent = await self.notifier.send(
            "review_discount",
            email,
            {
                "customer_name": purchase.customer_name or "there",
                "percent_off": self.percent_off,
                "discount_code": issued.code,
                "shop_url": self.shop_url,
            },
            tags={"transaction_id": transaction_id},
        )
        email_sent = isinstance(sent, Ok)
        if isinstance(sent, Err):
            logger.error(
                "Review discount %s issued but email to %s failed: %s",
                issued.code,
                email,
                sent.detail,
            )

        return ReviewReward(
            discount_code=issued.code,
            percent_off=self.percent_off,
            email_sent=email_sent,
        )
