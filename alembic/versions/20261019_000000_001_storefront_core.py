"""Cart sessions, discount codes, reviews and purchases.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # Cart sessions
    op.create_table(
        "cart_sessions",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("items", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("reminder1_email_id", sa.String(255), nullable=True),
        sa.Column("reminder1_scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder1_cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder2_email_id", sa.String(255), nullable=True),
        sa.Column("reminder2_scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder2_cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.String(500), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_cart_sessions")),
        sa.UniqueConstraint("token", name=op.f("uq_cart_sessions_token")),
    )
    op.create_index(op.f("ix_cart_sessions_email"), "cart_sessions", ["email"])

    # Discount codes
    op.create_table(
        "discount_codes",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("percent_off", sa.Integer(), nullable=False),
        sa.Column("applies_to", sa.String(20), nullable=False, server_default="any"),
        sa.Column("created_reason", sa.String(100), nullable=True),
        sa.Column("created_for_transaction_id", sa.String(64), nullable=True),
        sa.Column("created_for_email", sa.String(254), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_for_transaction_id", sa.String(64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_discount_codes")),
        sa.UniqueConstraint("code", name=op.f("uq_discount_codes_code")),
        sa.UniqueConstraint(
            "created_for_transaction_id",
            name=op.f("uq_discount_codes_created_for_transaction_id"),
        ),
        sa.CheckConstraint(
            "percent_off >= 1 AND percent_off <= 100",
            name=op.f("ck_discount_codes_percent_off_range"),
        ),
    )
    op.create_index(
        op.f("ix_discount_codes_created_for_email"),
        "discount_codes",
        ["created_for_email"],
    )

    # Reviews
    op.create_table(
        "reviews",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("transaction_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(120), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_reviews")),
        sa.UniqueConstraint("transaction_id", name=op.f("uq_reviews_transaction_id")),
    )
    op.create_index(op.f("ix_reviews_email"), "reviews", ["email"])

    # Purchases (written by fulfillment)
    op.create_table(
        "purchases",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("transaction_id", sa.String(64), nullable=False),
        sa.Column("customer_email", sa.String(254), nullable=False),
        sa.Column("customer_name", sa.String(200), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_purchases")),
        sa.UniqueConstraint("transaction_id", name=op.f("uq_purchases_transaction_id")),
    )
    op.create_index(op.f("ix_purchases_customer_email"), "purchases", ["customer_email"])


def downgrade() -> None:
    op.drop_table("purchases")
    op.drop_table("reviews")
    op.drop_table("discount_codes")
    op.drop_table("cart_sessions")
