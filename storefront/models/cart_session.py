"""CartSession model for unconverted shopper carts and their reminder state."""

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base, JSONType, UTCDateTime


class CartState(str, enum.Enum):
    """Reminder lifecycle of a cart session, derived from its marker columns."""

    ACTIVE_NO_REMINDER = "active_no_reminder"
    ACTIVE_REMINDER1_SENT = "active_reminder1_sent"
    ACTIVE_REMINDER2_SENT = "active_reminder2_sent"
    CONVERTED = "converted"


class CartSession(Base):
    """One shopper's saved cart, keyed by an opaque client-held token.

    Reminder and conversion markers only ever move from NULL to a value.
    Those writes go through guarded UPDATEs in the record store; nothing
    in the application resets them.
    """

    __tablename__ = "cart_sessions"

    token: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
    )
    email: Mapped[str] = mapped_column(
        String(254),
        nullable=False,
        index=True,
    )

    # Cart payload
    items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
    )

    # Reminder markers
    reminder1_email_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reminder1_scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    reminder1_cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    reminder2_email_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reminder2_scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    reminder2_cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Terminal marker
    converted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Last notification failure, for operators
    last_error: Mapped[str | None] = mapped_column(String(500), nullable=True)

    @property
    def state(self) -> CartState:
        if self.converted_at is not None:
            return CartState.CONVERTED
        if self.reminder2_email_id is not None:
            return CartState.ACTIVE_REMINDER2_SENT
        if self.reminder1_email_id is not None:
            return CartState.ACTIVE_REMINDER1_SENT
        return CartState.ACTIVE_NO_REMINDER

    @property
    def is_converted(self) -> bool:
        return self.converted_at is not None

    def __repr__(self) -> str:
        return f"<CartSession {self.token[:8]}... ({self.state.value})>"
