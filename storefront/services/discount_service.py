"""Discount engine: floor-clamped percentage math and single-use code lifecycle."""

import logging
import re
import secrets
import string
import time
from dataclasses import dataclass
from datetime import UTC, datetime

from storefront.core.config import Settings
from storefront.core.errors import (
    AlreadyRedeemedError,
    ConflictError,
    ErrorKind,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    error_for,
)
from storefront.core.result import Err, Ok
from storefront.models.discount_code import DiscountCode, DiscountScope
from storefront.services.record_store import RecordStore

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase
_CODE_STRIP_RE = re.compile(r"[^A-Z0-9_-]")
_PREFIX_STRIP_RE = re.compile(r"[^A-Z0-9]")

MAX_CODE_LENGTH = 32


@dataclass(frozen=True, slots=True)
class DiscountCalculation:
    """Result of applying a percentage discount under a price floor."""

    original_total_cents: int
    discount_amount_cents: int
    discounted_total_cents: int
    percent_off: int


@dataclass(frozen=True, slots=True)
class NewDiscountCode:
    """Parameters for minting a code."""

    percent_off: int
    applies_to: str = DiscountScope.ANY.value
    created_reason: str | None = None
    created_for_transaction_id: str | None = None
    created_for_email: str | None = None
    expires_at: datetime | None = None
    code: str | None = None
    prefix: str = "DISC"


@dataclass(frozen=True, slots=True)
class IssuedDiscountCode:
    code: str
    code_row: DiscountCode


def compute_floor_clamped_discount(
    total_cents: int,
    percent_off: int,
    min_total_cents: int,
) -> DiscountCalculation:
    """Apply ``percent_off`` to ``total_cents`` without going below ``min_total_cents``.

    The desired discount is rounded half-up; the clamp is exact. When the
    total is already at or under the floor the discount is zero.
    """
    if total_cents < 0:
        raise ValidationError("totalCents must be >= 0")
    if not 0 <= percent_off <= 100:
        raise ValidationError("percentOff must be between 0 and 100")
    if min_total_cents < 0:
        raise ValidationError("minTotalCents must be >= 0")

    desired = (total_cents * percent_off + 50) // 100
    max_allowed = max(0, total_cents - min_total_cents)
    discount = min(desired, max_allowed)

    return DiscountCalculation(
        original_total_cents=total_cents,
        discount_amount_cents=discount,
        discounted_total_cents=total_cents - discount,
        percent_off=percent_off,
    )


def normalize_discount_code(raw: str | None) -> str | None:
    """Canonical form used for storage and lookup: upper-case, ``[A-Z0-9_-]`` only."""
    code = _CODE_STRIP_RE.sub("", (raw or "").strip().upper())
    return code[:MAX_CODE_LENGTH] or None


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_discount_code(prefix: str = "DISC") -> str:
    """Human-shareable code like ``REVIEW-LQ2X9A-K3M8ZP1T``."""
    safe_prefix = _PREFIX_STRIP_RE.sub("", prefix.upper())[:10] or "DISC"
    stamp = _to_base36(time.time_ns() // 1_000_000)[-6:]
    rand = "".join(secrets.choice(_BASE36) for _ in range(8))
    return f"{safe_prefix}-{stamp}-{rand}"[:MAX_CODE_LENGTH]


class DiscountEngine:
    """Issues, validates and redeems single-use discount codes."""

    def __init__(self, store: RecordStore, settings: Settings) -> None:
        self.store = store
        self.max_attempts = max(1, settings.discount_code_max_attempts)
        self.max_percent = settings.discount_max_percent

    def _check_new_code(self, spec: NewDiscountCode) -> None:
        if not 1 <= spec.percent_off <= 100:
            raise ValidationError("percentOff must be between 1 and 100")
        if spec.percent_off > self.max_percent:
            raise ValidationError(f"percentOff may not exceed {self.max_percent}")
        if spec.applies_to not in {scope.value for scope in DiscountScope}:
            raise ValidationError(f"Unknown discount scope {spec.applies_to!r}")

    async def create_code(self, spec: NewDiscountCode) -> IssuedDiscountCode:
        """Mint one code, regenerating on collision up to ``max_attempts`` times."""
        self._check_new_code(spec)

        explicit = normalize_discount_code(spec.code) if spec.code else None
        email = spec.created_for_email.strip().lower() if spec.created_for_email else None

        for attempt in range(1, self.max_attempts + 1):
            code = explicit or generate_discount_code(spec.prefix)

            match await self.store.get_discount_code(code):
                case Ok(None):
                    pass
                case Ok(_):
                    if explicit:
                        raise ConflictError("Discount code already exists", subject=code)
                    logger.info("Generated code %s collided (attempt %d)", code, attempt)
                    continue
                case Err(kind, detail):
                    raise error_for(kind, f"Could not check discount code: {detail}", subject=code)

            result = await self.store.insert_discount_code(
                {
                    "code": code,
                    "percent_off": spec.percent_off,
                    "applies_to": spec.applies_to,
                    "created_reason": spec.created_reason,
                    "created_for_transaction_id": spec.created_for_transaction_id,
                    "created_for_email": email,
                    "expires_at": spec.expires_at,
                }
            )
            match result:
                case Ok(row):
                    logger.info(
                        "Discount code issued: code=%s percent=%d reason=%s",
                        code,
                        spec.percent_off,
                        spec.created_reason,
                    )
                    return IssuedDiscountCode(code=code, code_row=row)
                case Err(ErrorKind.CONFLICT, "code") if not explicit:
                    logger.info("Insert of %s collided (attempt %d)", code, attempt)
                    continue
                case Err(ErrorKind.CONFLICT, "code"):
                    raise ConflictError("Discount code already exists", subject=code)
                case Err(ErrorKind.CONFLICT, _):
                    raise ConflictError(
                        "A discount code was already issued for this transaction",
                        subject=spec.created_for_transaction_id or code,
                    )
                case Err(_, detail):
                    raise PersistenceError(f"Could not store discount code: {detail}", subject=code)

        logger.error("Gave up allocating a discount code after %d attempts", self.max_attempts)
        raise PersistenceError("Could not allocate a unique discount code")

    async def _load(self, code_raw: str | None) -> DiscountCode:
        code = normalize_discount_code(code_raw)
        if not code:
            raise ValidationError("Invalid discount code")

        match await self.store.get_discount_code(code):
            case Ok(None):
                raise NotFoundError("Discount code not found", subject=code)
            case Ok(row):
                return row
            case Err(kind, detail):
                raise error_for(kind, f"Could not load discount code: {detail}", subject=code)

    async def validate_for_context(
        self,
        code_raw: str | None,
        *,
        applies_to: str,
        email: str | None = None,
        transaction_id: str | None = None,
    ) -> DiscountCode:
        """Check that a code may be used for this purchase, without consuming it."""
        row = await self._load(code_raw)
        now = datetime.now(UTC)

        if row.is_expired(now):
            raise ExpiredError("Discount code expired", subject=row.code)
        if row.is_redeemed:
            raise AlreadyRedeemedError("Discount code already used", subject=row.code)
        if row.applies_to != DiscountScope.ANY.value and row.applies_to != applies_to:
            raise ValidationError("Discount code not valid for this purchase", subject=row.code)

        normalized_email = email.strip().lower() if email else None
        if row.created_for_email and normalized_email and row.created_for_email != normalized_email:
            raise ForbiddenError("Discount code is locked to a different email", subject=row.code)
        if (
            row.created_for_transaction_id
            and transaction_id
            and row.created_for_transaction_id != transaction_id
        ):
            raise ForbiddenError("Discount code is locked to a different order", subject=row.code)

        return row

    async def redeem(self, code_raw: str | None, transaction_id: str) -> DiscountCode:
        """Consume a code exactly once. The first concurrent writer wins."""
        row = await self._load(code_raw)
        now = datetime.now(UTC)

        if row.is_redeemed:
            raise AlreadyRedeemedError("Discount code already used", subject=row.code)
        if row.is_expired(now):
            raise ExpiredError("Discount code expired", subject=row.code)

        result = await self.store.update_discount_code_if(
            row.code,
            require_null=("redeemed_at",),
            patch={"redeemed_at": now, "redeemed_for_transaction_id": transaction_id},
        )
        match result:
            case Ok(redeemed):
                logger.info("Discount code redeemed: code=%s txn=%s", row.code, transaction_id)
                return redeemed
            case Err(ErrorKind.CONFLICT, _):
                logger.info("Lost redemption race: code=%s txn=%s", row.code, transaction_id)
                raise AlreadyRedeemedError("Discount code already used", subject=row.code)
            case Err(kind, detail):
                raise error_for(kind, f"Could not redeem discount code: {detail}", subject=row.code)
