"""Tests for the Resend email adapter."""

import json
from datetime import UTC, datetime

import httpx
import pytest

from storefront.core.config import Settings
from storefront.core.errors import ErrorKind
from storefront.core.result import Err, Ok
from storefront.services.email_service import EmailService
from tests.conftest import FakeResend

REVIEW_VARS = {
    "customer_name": "Aisha",
    "percent_off": 5,
    "discount_code": "REVIEW-ABC123-XYZ",
    "shop_url": "https://shop.example.com",
}


class TestSend:
    async def test_payload_shape(self, notifier: EmailService, resend: FakeResend) -> None:
        when = datetime(2026, 3, 1, 14, 0, tzinfo=UTC)

        result = await notifier.send(
            "review_discount",
            "buyer@example.com",
            REVIEW_VARS,
            scheduled_at=when,
            tags={"transaction_id": "txn_1001"},
        )

        assert result == Ok("em_1")
        request = resend.requests[0]
        assert str(request.url) == "https://api.resend.com/emails"
        assert request.headers["Authorization"] == "Bearer re_test_key"

        body = json.loads(request.content)
        assert body["from"] == "My Umrah eSIM <noreply@shop.example.com>"
        assert body["reply_to"] == "support@shop.example.com"
        assert body["to"] == ["buyer@example.com"]
        assert body["subject"] == "Your 5% discount code - My Umrah eSIM"
        assert body["scheduled_at"] == "2026-03-01T14:00:00+00:00"
        assert {"name": "category", "value": "discount"} in body["tags"]
        assert {"name": "transaction_id", "value": "txn_1001"} in body["tags"]
        assert "REVIEW-ABC123-XYZ" in body["html"]

    async def test_immediate_send_has_no_schedule(
        self, notifier: EmailService, resend: FakeResend
    ) -> None:
        await notifier.send("review_discount", "buyer@example.com", REVIEW_VARS)

        assert "scheduled_at" not in resend.sent[0]

    async def test_html_is_escaped(self, notifier: EmailService, resend: FakeResend) -> None:
        await notifier.send(
            "review_discount",
            "buyer@example.com",
            {**REVIEW_VARS, "customer_name": "<b>Eve</b>"},
        )

        assert "<b>Eve</b>" not in resend.sent[0]["html"]
        assert "&lt;b&gt;Eve&lt;/b&gt;" in resend.sent[0]["html"]

    async def test_missing_api_key(self, http_client: httpx.AsyncClient, resend: FakeResend) -> None:
        unconfigured = EmailService(http_client, Settings(_env_file=None, resend_api_key=""))  # type: ignore[call-arg]

        result = await unconfigured.send("review_discount", "buyer@example.com", REVIEW_VARS)

        assert isinstance(result, Err)
        assert result.kind is ErrorKind.NOTIFICATION_ERROR
        assert resend.requests == []

    async def test_unknown_template(self, notifier: EmailService, resend: FakeResend) -> None:
        result = await notifier.send("welcome", "buyer@example.com", {})

        assert isinstance(result, Err)
        assert result.kind is ErrorKind.VALIDATION_ERROR
        assert resend.requests == []

    async def test_missing_variable(self, notifier: EmailService, resend: FakeResend) -> None:
        result = await notifier.send("review_discount", "buyer@example.com", {"customer_name": "Aisha"})

        assert isinstance(result, Err)
        assert result.kind is ErrorKind.NOTIFICATION_ERROR
        assert resend.requests == []

    async def test_provider_error(self, notifier: EmailService, resend: FakeResend) -> None:
        resend.fail_sends = {1}

        result = await notifier.send("review_discount", "buyer@example.com", REVIEW_VARS)

        assert result == Err(ErrorKind.NOTIFICATION_ERROR, "provider returned 500")

    async def test_transport_error(self, test_settings: Settings) -> None:
        def _refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(_refuse)) as client:
            result = await EmailService(client, test_settings).send(
                "review_discount", "buyer@example.com", REVIEW_VARS
            )

        assert isinstance(result, Err)
        assert result.kind is ErrorKind.NOTIFICATION_ERROR
        assert "connection refused" in result.detail

    async def test_response_without_id(self, test_settings: Settings) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))

        async with httpx.AsyncClient(transport=transport) as client:
            result = await EmailService(client, test_settings).send(
                "review_discount", "buyer@example.com", REVIEW_VARS
            )

        assert result == Err(ErrorKind.NOTIFICATION_ERROR, "provider returned no message id")


class TestCancel:
    async def test_cancel(self, notifier: EmailService, resend: FakeResend) -> None:
        result = await notifier.cancel("em_42")

        assert result == Ok(None)
        assert resend.cancelled == ["em_42"]
        assert str(resend.requests[0].url) == "https://api.resend.com/emails/em_42/cancel"

    async def test_cancel_after_delivery_fails(self, notifier: EmailService, resend: FakeResend) -> None:
        resend.fail_cancels = True

        result = await notifier.cancel("em_42")

        assert result == Err(ErrorKind.NOTIFICATION_ERROR, "provider returned 422")


class TestRender:
    @pytest.mark.parametrize(
        ("template", "subject"),
        [
            ("cart_reminder_1", "You left something in your cart - My Umrah eSIM"),
            ("cart_reminder_2", "Last chance to finish checkout - My Umrah eSIM"),
        ],
    )
    async def test_cart_reminder_subjects(self, notifier: EmailService, template: str, subject: str) -> None:
        rendered_subject, html = notifier.render(
            template,
            {
                "restore_url": "https://shop.example.com/cart?restore=tok_1",
                "summary": "2x Saudi 10GB",
            },
        )

        assert rendered_subject == subject
        assert "https://shop.example.com/cart?restore=tok_1" in html
        assert "2x Saudi 10GB" in html
