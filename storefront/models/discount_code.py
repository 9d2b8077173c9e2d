"""DiscountCode model for single-use promotional codes."""

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base, UTCDateTime


class DiscountScope(str, enum.Enum):
    """Which purchases a code may be applied to."""

    ANY = "any"
    ESIM = "esim"
    CART = "cart"
    TOPUP = "topup"


class DiscountCode(Base):
    """A single-use percentage discount.

    ``percent_off`` is fixed at creation. A code is usable while
    ``redeemed_at`` is NULL and ``expires_at`` has not passed. At most one
    code may be minted per triggering transaction.
    """

    __tablename__ = "discount_codes"
    __table_args__ = (
        CheckConstraint("percent_off >= 1 AND percent_off <= 100", name="percent_off_range"),
    )

    code: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
    )
    percent_off: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    applies_to: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DiscountScope.ANY.value,
    )

    # Provenance
    created_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_for_transaction_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
    )
    created_for_email: Mapped[str | None] = mapped_column(
        String(254),
        nullable=True,
        index=True,
    )

    # Lifecycle
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    redeemed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    redeemed_for_transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    @property
    def is_redeemed(self) -> bool:
        return self.redeemed_at is not None

    def __repr__(self) -> str:
        return f"<DiscountCode {self.code} ({self.percent_off}% {self.applies_to})>"
