"""Tests for the review submission flow and its discount reward."""

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.errors import ConflictError, ErrorKind, PersistenceError
from storefront.core.result import Err
from storefront.models.discount_code import DiscountCode
from storefront.models.review import Review
from storefront.services.review_service import ReviewService
from tests.conftest import TEST_USER_EMAIL, TEST_USER_ID, FakeResend


async def _count(session_factory: async_sessionmaker[AsyncSession], model: Any) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestSubmitReviewRoute:
    """Tests for POST /api/v1/reviews."""

    async def test_review_issues_discount(
        self,
        client: AsyncClient,
        resend: FakeResend,
        session_factory: async_sessionmaker[AsyncSession],
        purchase_factory: Callable[..., Any],
    ) -> None:
        await purchase_factory()

        response = await client.post(
            "/api/v1/reviews",
            json={"transactionId": "txn_1001", "rating": 5, "title": "Great", "body": "Worked in Makkah"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["discountCode"].startswith("REVIEW-")
        assert data["discountPercentOff"] == 5
        assert data["emailSent"] is True

        async with session_factory() as session:
            review = (await session.execute(select(Review))).scalar_one()
            code = (await session.execute(select(DiscountCode))).scalar_one()
        assert review.user_id == TEST_USER_ID
        assert review.rating == 5
        assert code.code == data["discountCode"]
        assert code.created_for_transaction_id == "txn_1001"
        assert code.created_for_email == TEST_USER_EMAIL
        assert code.created_reason == "review_5_percent"
        assert code.applies_to == "any"
        assert code.expires_at is not None

        assert len(resend.sent) == 1
        email = resend.sent[0]
        assert email["to"] == [TEST_USER_EMAIL]
        assert "5%" in email["subject"]
        assert data["discountCode"] in email["html"]
        assert "Aisha" in email["html"]

    async def test_second_review_conflicts(
        self,
        client: AsyncClient,
        resend: FakeResend,
        session_factory: async_sessionmaker[AsyncSession],
        purchase_factory: Callable[..., Any],
    ) -> None:
        await purchase_factory()
        body = {"transactionId": "txn_1001", "rating": 5}

        first = await client.post("/api/v1/reviews", json=body)
        second = await client.post("/api/v1/reviews", json=body)

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["code"] == "conflict"
        assert await _count(session_factory, DiscountCode) == 1
        assert len(resend.sent) == 1

    async def test_other_customer_is_forbidden(
        self,
        client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
        purchase_factory: Callable[..., Any],
    ) -> None:
        await purchase_factory(customer_email="someone-else@example.com")

        response = await client.post("/api/v1/reviews", json={"transactionId": "txn_1001", "rating": 4})

        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"
        assert await _count(session_factory, Review) == 0

    async def test_purchaser_email_match_ignores_case(
        self,
        client: AsyncClient,
        purchase_factory: Callable[..., Any],
    ) -> None:
        await purchase_factory(customer_email="Test@Example.COM")

        response = await client.post("/api/v1/reviews", json={"transactionId": "txn_1001", "rating": 4})

        assert response.status_code == 200

    async def test_unknown_purchase(self, client: AsyncClient) -> None:
        response = await client.post("/api/v1/reviews", json={"transactionId": "txn_404", "rating": 4})

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    @pytest.mark.parametrize("rating", [0, 6])
    async def test_rating_out_of_range(
        self,
        client: AsyncClient,
        purchase_factory: Callable[..., Any],
        rating: int,
    ) -> None:
        await purchase_factory()

        response = await client.post("/api/v1/reviews", json={"transactionId": "txn_1001", "rating": rating})

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    async def test_requires_authentication(self, unauthed_client: AsyncClient) -> None:
        response = await unauthed_client.post("/api/v1/reviews", json={"transactionId": "txn_1001", "rating": 5})

        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated", "code": "unauthorized"}

    @pytest.mark.parametrize("auth_user", [{"sub": TEST_USER_ID}], indirect=True)
    async def test_user_without_email(
        self,
        client: AsyncClient,
        purchase_factory: Callable[..., Any],
    ) -> None:
        await purchase_factory()

        response = await client.post("/api/v1/reviews", json={"transactionId": "txn_1001", "rating": 5})

        assert response.status_code == 401

    @pytest.mark.parametrize("auth_user", [{"email": TEST_USER_EMAIL}], indirect=True)
    async def test_user_without_subject(self, client: AsyncClient) -> None:
        response = await client.post("/api/v1/reviews", json={"transactionId": "txn_1001", "rating": 5})

        assert response.status_code == 401
        assert response.json()["error"] == "Token has no subject"

    async def test_email_failure_still_returns_code(
        self,
        client: AsyncClient,
        resend: FakeResend,
        session_factory: async_sessionmaker[AsyncSession],
        purchase_factory: Callable[..., Any],
    ) -> None:
        await purchase_factory()
        resend.fail_sends = {1}

        response = await client.post("/api/v1/reviews", json={"transactionId": "txn_1001", "rating": 3})

        assert response.status_code == 200
        assert response.json()["emailSent"] is False
        assert await _count(session_factory, DiscountCode) == 1


class TestReviewService:
    async def test_missing_name_falls_back(
        self,
        review_service: ReviewService,
        resend: FakeResend,
        purchase_factory: Callable[..., Any],
    ) -> None:
        await purchase_factory(customer_name=None)

        await review_service.submit_review(
            user_id=TEST_USER_ID,
            user_email=TEST_USER_EMAIL,
            transaction_id="txn_1001",
            rating=5,
        )

        assert "there" in resend.sent[0]["html"]

    async def test_concurrent_submissions_mint_one_code(
        self,
        review_service: ReviewService,
        session_factory: async_sessionmaker[AsyncSession],
        purchase_factory: Callable[..., Any],
    ) -> None:
        await purchase_factory()

        results = await asyncio.gather(
            *(
                review_service.submit_review(
                    user_id=TEST_USER_ID,
                    user_email=TEST_USER_EMAIL,
                    transaction_id="txn_1001",
                    rating=5,
                )
                for _ in range(2)
            ),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert await _count(session_factory, DiscountCode) == 1
        assert await _count(session_factory, Review) == 1

    async def test_retry_issues_code_missed_after_review_was_stored(
        self,
        review_service: ReviewService,
        resend: FakeResend,
        session_factory: async_sessionmaker[AsyncSession],
        purchase_factory: Callable[..., Any],
    ) -> None:
        await purchase_factory()
        submit = {
            "user_id": TEST_USER_ID,
            "user_email": TEST_USER_EMAIL,
            "transaction_id": "txn_1001",
            "rating": 5,
        }

        with patch.object(
            review_service.discounts.store,
            "insert_discount_code",
            AsyncMock(return_value=Err(ErrorKind.PERSISTENCE_ERROR, "disk full")),
        ):
            with pytest.raises(PersistenceError):
                await review_service.submit_review(**submit)

        assert await _count(session_factory, Review) == 1
        assert await _count(session_factory, DiscountCode) == 0

        reward = await review_service.submit_review(**submit)

        assert reward.discount_code.startswith("REVIEW-")
        assert await _count(session_factory, Review) == 1
        assert await _count(session_factory, DiscountCode) == 1
        assert len(resend.sent) == 1

        with pytest.raises(ConflictError, match="already been reviewed"):
            await review_service.submit_review(**submit)
        assert await _count(session_factory, DiscountCode) == 1
