"""Email delivery service using the Resend API."""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
from jinja2 import Environment, FileSystemLoader, TemplateError

from storefront.core.config import Settings
from storefront.core.errors import ErrorKind
from storefront.core.result import Err, Ok, Result

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com"

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"


@dataclass(frozen=True, slots=True)
class EmailTemplate:
    """An HTML template file plus its subject line pattern."""

    filename: str
    subject: str
    category: str


TEMPLATES: dict[str, EmailTemplate] = {
    "cart_reminder_1": EmailTemplate(
        filename="cart_reminder.html",
        subject="You left something in your cart - {brand_name}",
        category="cart_abandonment",
    ),
    "cart_reminder_2": EmailTemplate(
        filename="cart_reminder.html",
        subject="Last chance to finish checkout - {brand_name}",
        category="cart_abandonment",
    ),
    "review_discount": EmailTemplate(
        filename="review_discount.html",
        subject="Your {percent_off}% discount code - {brand_name}",
        category="discount",
    ),
}


class EmailService:
    """Sends, schedules and cancels transactional emails via Resend.

    The HTTP client is created by the application lifespan and closed there;
    this class never owns a connection pool of its own.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self.client = client
        self.settings = settings
        self.jinja = Environment(loader=FileSystemLoader(str(TEMPLATE_DIR)), autoescape=True)

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.resend_api_key}",
            "Content-Type": "application/json",
        }

    def render(self, template: str, variables: dict[str, Any]) -> tuple[str, str]:
        """Return ``(subject, html)`` for a registered template."""
        spec = TEMPLATES[template]
        context = {
            "brand_name": self.settings.brand_name,
            "support_email": self.settings.support_email,
            **variables,
        }
        subject = spec.subject.format(**context)
        html = self.jinja.get_template(spec.filename).render(subject=subject, **context)
        return subject, html

    async def send(
        self,
        template: str,
        to: str,
        variables: dict[str, Any],
        *,
        scheduled_at: datetime | None = None,
        tags: dict[str, str] | None = None,
    ) -> Result[str]:
        """Send (or schedule) an email. Returns the Resend message id."""
        if template not in TEMPLATES:
            return Err(ErrorKind.VALIDATION_ERROR, f"unknown template {template!r}")

        if not self.settings.resend_api_key:
            logger.warning("Resend API key not configured - %s not sent to %s", template, to)
            return Err(ErrorKind.NOTIFICATION_ERROR, "email provider not configured")

        try:
            subject, html = self.render(template, variables)
        except (KeyError, TemplateError) as exc:
            logger.error("Failed to render %s: %s", template, exc)
            return Err(ErrorKind.NOTIFICATION_ERROR, f"template error: {exc}")

        payload: dict[str, Any] = {
            "from": self.settings.sender_address,
            "reply_to": self.settings.support_email,
            "to": [to],
            "subject": subject,
            "html": html,
            "tags": [
                {"name": "category", "value": TEMPLATES[template].category},
                *({"name": k, "value": v} for k, v in (tags or {}).items()),
            ],
        }
        if scheduled_at is not None:
            payload["scheduled_at"] = scheduled_at.isoformat()

        try:
            response = await self.client.post(
                f"{RESEND_API_URL}/emails",
                headers=self._headers,
                json=payload,
            )
        except httpx.HTTPError as exc:
            logger.error("Error sending %s to %s: %s", template, to, exc)
            return Err(ErrorKind.NOTIFICATION_ERROR, str(exc)[:200])

        if not response.is_success:
            logger.error(
                "Failed to send %s: to=%s status=%s body=%s",
                template,
                to,
                response.status_code,
                response.text[:500],
            )
            return Err(ErrorKind.NOTIFICATION_ERROR, f"provider returned {response.status_code}")

        email_id = response.json().get("id")
        if not email_id:
            return Err(ErrorKind.NOTIFICATION_ERROR, "provider returned no message id")

        logger.info("Email %s accepted: to=%s id=%s", template, to, email_id)
        return Ok(str(email_id))

    async def cancel(self, message_id: str) -> Result[None]:
        """Cancel a scheduled email. Fails once the provider has already sent it."""
        if not self.settings.resend_api_key:
            return Err(ErrorKind.NOTIFICATION_ERROR, "email provider not configured")

        try:
            response = await self.client.post(
                f"{RESEND_API_URL}/emails/{message_id}/cancel",
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("Error cancelling email %s: %s", message_id, exc)
            return Err(ErrorKind.NOTIFICATION_ERROR, str(exc)[:200])

        if not response.is_success:
            logger.warning(
                "Failed to cancel email %s: status=%s body=%s",
                message_id,
                response.status_code,
                response.text[:500],
            )
            return Err(ErrorKind.NOTIFICATION_ERROR, f"provider returned {response.status_code}")

        logger.info("Cancelled scheduled email %s", message_id)
        return Ok(None)
