"""Purchase model, written by the fulfillment pipeline and only read here."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base


class Purchase(Base):
    """A completed order. Used to check who may review a transaction."""

    __tablename__ = "purchases"

    transaction_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )
    customer_email: Mapped[str] = mapped_column(String(254), nullable=False, index=True)
    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<Purchase {self.transaction_id}>"
