"""Cart-abandonment reminder scheduling.

A saved cart gets two reminder emails, both handed to the email provider
straight away with a future ``scheduled_at``. The provider does the waiting,
so nothing here sleeps or runs in the background.

Per session the lifecycle is::

    active_no_reminder -> active_reminder1_sent -> active_reminder2_sent
            \\                    |                        /
             +---------------> converted <----------------+

Every marker write is a guarded UPDATE (``... WHERE field IS NULL``). When two
requests race to record the same reminder slot, the loser cancels the email
it just scheduled and adopts the winner's message id.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from urllib.parse import quote

from storefront.core.config import Settings
from storefront.core.errors import (
    ErrorKind,
    NotFoundError,
    NotificationError,
    ValidationError,
    error_for,
)
from storefront.core.result import Err, Ok
from storefront.core.security import is_valid_email
from storefront.models.cart_session import CartSession
from storefront.schemas.cart import CartItem
from storefront.services.email_service import EmailService
from storefront.services.record_store import RecordStore

logger = logging.getLogger(__name__)

REMINDER_SLOTS = (1, 2)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class PartialScheduleFailure:
    """A reminder email went out but its message id could not be recorded."""

    token: str
    slot: int
    message_id: str
    detail: str


@dataclass(slots=True)
class ScheduleOutcome:
    reminder1: str | None = None
    reminder2: str | None = None
    partial_failures: list[PartialScheduleFailure] = field(default_factory=list)


def build_cart_summary(items: Sequence[dict[str, object]]) -> str:
    """Short ``2x Saudi 10GB, 1x Umrah 5GB`` style line for the email body."""
    return ", ".join(
        f"{item.get('quantity', 1)}x {item.get('name') or item.get('offer_id')}"
        for item in items[:10]
    )


class ReminderScheduler:
    """Saves carts, schedules their two reminders and records conversion."""

    def __init__(
        self,
        store: RecordStore,
        notifier: EmailService,
        *,
        reminder1_delay: timedelta,
        reminder2_delay: timedelta,
        base_url: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.delays = {1: reminder1_delay, 2: reminder2_delay}
        self.base_url = base_url.rstrip("/")
        self.clock = clock

    @classmethod
    def from_settings(
        cls, store: RecordStore, notifier: EmailService, settings: Settings
    ) -> "ReminderScheduler":
        return cls(
            store,
            notifier,
            reminder1_delay=timedelta(minutes=settings.reminder1_delay_minutes),
            reminder2_delay=timedelta(minutes=settings.reminder2_delay_minutes),
            base_url=settings.base_url,
        )

    def restore_url(self, token: str) -> str:
        return f"{self.base_url}/cart?restore={quote(token, safe='')}"

    # ------------------------------------------------------------------
    # Cart persistence
    # ------------------------------------------------------------------

    async def save_or_update_cart(
        self,
        token: str,
        email: str,
        items: Sequence[CartItem],
        currency: str = "USD",
    ) -> CartSession:
        """Upsert the cart by token. Reminder and conversion markers are left alone."""
        if not token:
            raise ValidationError("Missing cart token")
        if not is_valid_email(email):
            raise ValidationError("Invalid email address", subject=token)
        if not items:
            raise ValidationError("Cart is empty", subject=token)

        result = await self.store.upsert_cart_session(
            token,
            email=email,
            items=[item.model_dump() for item in items],
            currency=currency,
        )
        match result:
            case Ok(session):
                logger.info("Cart saved: token=%s state=%s", token, session.state.value)
                return session
            case Err(kind, detail):
                raise error_for(kind, f"Could not save cart: {detail}", subject=token)

    async def restore_cart(self, token: str) -> CartSession:
        match await self.store.get_cart_session(token):
            case Ok(None):
                raise NotFoundError("Cart session not found", subject=token)
            case Ok(session):
                return session
            case Err(kind, detail):
                raise error_for(kind, f"Could not load cart: {detail}", subject=token)

    # ------------------------------------------------------------------
    # Reminder scheduling
    # ------------------------------------------------------------------

    async def schedule_reminders(self, session: CartSession) -> ScheduleOutcome:
        """Schedule both reminders for a live session; already-recorded slots are reused."""
        outcome = ScheduleOutcome()
        if session.is_converted:
            logger.info("Skipping reminders for converted cart %s", session.token)
            return outcome

        now = self.clock()
        outcome.reminder1 = await self._schedule_slot(session, 1, now, outcome)

        # Conversion may have landed while reminder 1 was in flight
        current = await self.restore_cart(session.token)
        if current.is_converted:
            logger.info("Cart %s converted before reminder 2; not sending", session.token)
            return outcome

        outcome.reminder2 = await self._schedule_slot(current, 2, now, outcome)
        return outcome

    async def _schedule_slot(
        self,
        session: CartSession,
        slot: int,
        now: datetime,
        outcome: ScheduleOutcome,
    ) -> str | None:
        id_field = f"reminder{slot}_email_id"
        existing: str | None = getattr(session, id_field)
        if existing:
            return existing

        token = session.token
        send_at = now + self.delays[slot]
        sent = await self.notifier.send(
            f"cart_reminder_{slot}",
            session.email,
            {
                "reminder_number": slot,
                "restore_url": self.restore_url(token),
                "summary": build_cart_summary(session.items or []),
                "token": token,
            },
            scheduled_at=send_at,
            tags={"cart_token": token, "reminder": str(slot)},
        )
        match sent:
            case Ok(message_id):
                pass
            case Err(_, detail):
                await self._record_error(token, f"reminder {slot}: {detail}")
                raise NotificationError("Failed to schedule reminders", subject=token)

        recorded = await self.store.update_cart_session_if(
            token,
            require_null=(id_field,),
            patch={
                id_field: message_id,
                f"reminder{slot}_scheduled_at": send_at,
                "last_error": None,
            },
        )
        match recorded:
            case Ok(updated):
                logger.info(
                    "Reminder %d scheduled: token=%s id=%s at=%s",
                    slot,
                    token,
                    message_id,
                    send_at.isoformat(),
                )
                if updated.is_converted:
                    await self._cancel_slot(updated, slot)
                return message_id
            case Err(ErrorKind.CONFLICT, _):
                return await self._yield_slot(token, slot, message_id)
            case Err(_, detail):
                failure = PartialScheduleFailure(token, slot, message_id, detail)
                outcome.partial_failures.append(failure)
                logger.error(
                    "PartialScheduleFailure: token=%s reminder=%d id=%s detail=%s",
                    token,
                    slot,
                    message_id,
                    detail,
                )
                return message_id

    async def _yield_slot(self, token: str, slot: int, message_id: str) -> str | None:
        """Another request recorded this slot first: withdraw our duplicate email."""
        logger.info("Reminder %d for %s already recorded; cancelling duplicate %s", slot, token, message_id)
        match await self.notifier.cancel(message_id):
            case Err(_, detail):
                logger.warning(
                    "Duplicate reminder %d for %s could not be cancelled (id=%s): %s",
                    slot,
                    token,
                    message_id,
                    detail,
                )
            case Ok(_):
                pass

        current = await self.restore_cart(token)
        winner: str | None = getattr(current, f"reminder{slot}_email_id")
        return winner

    async def _record_error(self, token: str, message: str) -> None:
        result = await self.store.update_cart_session_if(token, patch={"last_error": message[:500]})
        if isinstance(result, Err):
            logger.error("Could not record last_error for %s: %s", token, result.detail)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    async def mark_converted(self, token: str) -> bool:
        """Record the purchase. Returns False when the cart was already converted."""
        result = await self.store.update_cart_session_if(
            token,
            require_null=("converted_at",),
            patch={"converted_at": self.clock()},
        )
        match result:
            case Ok(session):
                logger.info("Cart converted: token=%s", token)
                for slot in REMINDER_SLOTS:
                    await self._cancel_slot(session, slot)
                return True
            case Err(ErrorKind.CONFLICT, _):
                logger.info("Cart %s already converted", token)
                return False
            case Err(ErrorKind.NOT_FOUND, _):
                raise NotFoundError("Cart session not found", subject=token)
            case Err(kind, detail):
                raise error_for(kind, f"Could not mark cart converted: {detail}", subject=token)

    async def _cancel_slot(self, session: CartSession, slot: int) -> None:
        """Best-effort recall of a scheduled reminder for a converted cart."""
        message_id: str | None = getattr(session, f"reminder{slot}_email_id")
        if not message_id or getattr(session, f"reminder{slot}_cancelled_at") is not None:
            return

        match await self.notifier.cancel(message_id):
            case Err(_, detail):
                # Usually means the provider already delivered it
                logger.warning(
                    "Could not cancel reminder %d for %s (id=%s): %s",
                    slot,
                    session.token,
                    message_id,
                    detail,
                )
                return
            case Ok(_):
                pass

        cancelled_field = f"reminder{slot}_cancelled_at"
        result = await self.store.update_cart_session_if(
            session.token,
            require_null=(cancelled_field,),
            patch={cancelled_field: self.clock()},
        )
        if isinstance(result, Err) and result.kind is not ErrorKind.CONFLICT:
            logger.error(
                "Reminder %d for %s cancelled but not recorded: %s",
                slot,
                session.token,
                result.detail,
            )
