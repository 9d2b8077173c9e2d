"""Review model for post-purchase reviews that earn a discount code."""

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base


class Review(Base):
    """A customer review of one order. One review per transaction."""

    __tablename__ = "reviews"

    transaction_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False, index=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str | None] = mapped_column(String(120), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Moderation
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Review {self.transaction_id} ({self.rating}/5)>"
