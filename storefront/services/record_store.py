"""Persistence adapter for cart sessions, discount codes, reviews and purchases.

Every method opens its own short-lived session and returns ``Ok`` / ``Err``.
Guarded writes are single ``UPDATE ... WHERE <field> IS NULL`` statements, so
the database decides which of several concurrent writers wins; callers never
read-then-write to claim a marker.
"""

import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.errors import ErrorKind
from storefront.core.result import Err, Ok, Result
from storefront.models.cart_session import CartSession
from storefront.models.discount_code import DiscountCode
from storefront.models.purchase import Purchase
from storefront.models.review import Review

logger = logging.getLogger(__name__)

# Columns a guarded write may test for NULL
CART_GUARD_FIELDS = frozenset(
    {
        "reminder1_email_id",
        "reminder2_email_id",
        "reminder1_cancelled_at",
        "reminder2_cancelled_at",
        "converted_at",
    }
)
DISCOUNT_GUARD_FIELDS = frozenset({"redeemed_at"})

# Columns a guarded write may set
CART_PATCH_FIELDS = CART_GUARD_FIELDS | {
    "reminder1_scheduled_at",
    "reminder2_scheduled_at",
    "last_error",
}
DISCOUNT_PATCH_FIELDS = frozenset({"redeemed_at", "redeemed_for_transaction_id"})

# Unique constraints (named by the metadata naming convention) and the column each guards
UNIQUE_CONSTRAINTS = {
    "uq_cart_sessions_token": "token",
    "uq_discount_codes_code": "code",
    "uq_discount_codes_created_for_transaction_id": "created_for_transaction_id",
    "uq_reviews_transaction_id": "transaction_id",
    "uq_purchases_transaction_id": "transaction_id",
}

_SQLITE_UNIQUE_RE = re.compile(r"UNIQUE constraint failed: (?P<table>\w+)\.(?P<column>\w+)")


def _check_fields(fields: Iterable[str], allowed: frozenset[str], what: str) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"{what} not allowed: {', '.join(sorted(unknown))}")


def _constraint_name(exc: IntegrityError) -> str | None:
    """Name of the violated unique constraint, or None for any other integrity error."""
    # asyncpg surfaces the name on the driver exception chained under the adapter
    for source in (exc.orig, getattr(exc.orig, "__cause__", None)):
        name = getattr(source, "constraint_name", None)
        if name:
            return str(name)

    # SQLite only reports "UNIQUE constraint failed: <table>.<column>"
    match = _SQLITE_UNIQUE_RE.search(str(exc.orig))
    if match:
        return f"uq_{match['table']}_{match['column']}"
    return None


def _conflict_target(exc: IntegrityError) -> str | None:
    """Column a failed insert collided on, when the violation is a known unique key."""
    name = _constraint_name(exc)
    return UNIQUE_CONSTRAINTS.get(name) if name else None


class RecordStore:
    """SQLAlchemy-backed record store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def _run[T](
        self,
        operation: str,
        subject: str,
        work: Callable[[AsyncSession], Awaitable[Result[T]]],
    ) -> Result[T]:
        try:
            async with self.session_factory() as session:
                return await work(session)
        except IntegrityError as exc:
            target = _conflict_target(exc)
            if target is None:
                logger.error("%s integrity error for %s: %s", operation, subject, exc.orig)
                return Err(ErrorKind.PERSISTENCE_ERROR, str(exc.orig)[:200])
            logger.info("%s conflict on %s for %s", operation, target, subject)
            return Err(ErrorKind.CONFLICT, target)
        except SQLAlchemyError as exc:
            logger.error("%s failed for %s: %s", operation, subject, exc)
            return Err(ErrorKind.PERSISTENCE_ERROR, str(exc)[:200])

    @staticmethod
    def _insert_for(session: AsyncSession) -> Any:
        if session.get_bind().dialect.name == "postgresql":
            return pg_insert
        return sqlite_insert

    # ------------------------------------------------------------------
    # Cart sessions
    # ------------------------------------------------------------------

    async def upsert_cart_session(
        self,
        token: str,
        *,
        email: str,
        items: list[dict[str, Any]],
        currency: str,
    ) -> Result[CartSession]:
        """Create the session or refresh its payload. Markers are never touched."""

        async def work(session: AsyncSession) -> Result[CartSession]:
            insert = self._insert_for(session)
            stmt = insert(CartSession).values(
                token=token,
                email=email,
                items=items,
                currency=currency,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[CartSession.token],
                set_={
                    "email": stmt.excluded["email"],
                    "items": stmt.excluded["items"],
                    "currency": stmt.excluded["currency"],
                    "updated_at": func.now(),
                },
            )
            await session.execute(stmt)
            await session.commit()

            row = (
                await session.execute(select(CartSession).where(CartSession.token == token))
            ).scalar_one()
            return Ok(row)

        return await self._run("upsert_cart_session", token, work)

    async def get_cart_session(self, token: str) -> Result[CartSession | None]:
        async def work(session: AsyncSession) -> Result[CartSession | None]:
            stmt = select(CartSession).where(CartSession.token == token)
            return Ok((await session.execute(stmt)).scalar_one_or_none())

        return await self._run("get_cart_session", token, work)

    async def update_cart_session_if(
        self,
        token: str,
        *,
        require_null: Iterable[str] = (),
        patch: dict[str, Any],
    ) -> Result[CartSession]:
        """Apply ``patch`` only while every ``require_null`` column is still NULL.

        Returns ``Err(CONFLICT)`` when the guard no longer holds and
        ``Err(NOT_FOUND)`` when no session has this token.
        """
        guards = tuple(require_null)
        _check_fields(guards, CART_GUARD_FIELDS, "guard")
        _check_fields(patch, CART_PATCH_FIELDS, "patch")

        async def work(session: AsyncSession) -> Result[CartSession]:
            conditions = [CartSession.token == token]
            conditions.extend(getattr(CartSession, field).is_(None) for field in guards)
            stmt = (
                update(CartSession)
                .where(*conditions)
                .values(**patch, updated_at=datetime.now(UTC))
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()

            row = (
                await session.execute(select(CartSession).where(CartSession.token == token))
            ).scalar_one_or_none()
            if row is None:
                return Err(ErrorKind.NOT_FOUND, "cart session")
            if result.rowcount == 0:  # type: ignore[attr-defined]
                return Err(ErrorKind.CONFLICT, ",".join(guards))
            return Ok(row)

        return await self._run("update_cart_session_if", token, work)

    # ------------------------------------------------------------------
    # Discount codes
    # ------------------------------------------------------------------

    async def insert_discount_code(self, values: dict[str, Any]) -> Result[DiscountCode]:
        """Insert a new code; a unique-key collision comes back as ``Err(CONFLICT)``."""

        async def work(session: AsyncSession) -> Result[DiscountCode]:
            row = DiscountCode(**values)
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return Ok(row)

        return await self._run("insert_discount_code", str(values.get("code")), work)

    async def get_discount_code(self, code: str) -> Result[DiscountCode | None]:
        async def work(session: AsyncSession) -> Result[DiscountCode | None]:
            stmt = select(DiscountCode).where(DiscountCode.code == code)
            return Ok((await session.execute(stmt)).scalar_one_or_none())

        return await self._run("get_discount_code", code, work)

    async def get_discount_code_for_transaction(
        self, transaction_id: str
    ) -> Result[DiscountCode | None]:
        """The code minted for a transaction, if one was."""

        async def work(session: AsyncSession) -> Result[DiscountCode | None]:
            stmt = select(DiscountCode).where(
                DiscountCode.created_for_transaction_id == transaction_id
            )
            return Ok((await session.execute(stmt)).scalar_one_or_none())

        return await self._run("get_discount_code_for_transaction", transaction_id, work)

    async def update_discount_code_if(
        self,
        code: str,
        *,
        require_null: Iterable[str] = (),
        patch: dict[str, Any],
    ) -> Result[DiscountCode]:
        guards = tuple(require_null)
        _check_fields(guards, DISCOUNT_GUARD_FIELDS, "guard")
        _check_fields(patch, DISCOUNT_PATCH_FIELDS, "patch")

        async def work(session: AsyncSession) -> Result[DiscountCode]:
            conditions = [DiscountCode.code == code]
            conditions.extend(getattr(DiscountCode, field).is_(None) for field in guards)
            stmt = (
                update(DiscountCode)
                .where(*conditions)
                .values(**patch, updated_at=datetime.now(UTC))
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()

            row = (
                await session.execute(select(DiscountCode).where(DiscountCode.code == code))
            ).scalar_one_or_none()
            if row is None:
                return Err(ErrorKind.NOT_FOUND, "discount code")
            if result.rowcount == 0:  # type: ignore[attr-defined]
                return Err(ErrorKind.CONFLICT, ",".join(guards))
            return Ok(row)

        return await self._run("update_discount_code_if", code, work)

    # ------------------------------------------------------------------
    # Reviews and purchases
    # ------------------------------------------------------------------

    async def insert_review(self, values: dict[str, Any]) -> Result[Review]:
        async def work(session: AsyncSession) -> Result[Review]:
            row = Review(**values)
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return Ok(row)

        return await self._run("insert_review", str(values.get("transaction_id")), work)

    async def get_purchase(self, transaction_id: str) -> Result[Purchase | None]:
        async def work(session: AsyncSession) -> Result[Purchase | None]:
            stmt = select(Purchase).where(Purchase.transaction_id == transaction_id)
            return Ok((await session.execute(stmt)).scalar_one_or_none())

        return await self._run("get_purchase", transaction_id, work)

    async def ping(self) -> Result[None]:
        async def work(session: AsyncSession) -> Result[None]:
            await session.execute(text("SELECT 1"))
            return Ok(None)

        return await self._run("ping", "database", work)
