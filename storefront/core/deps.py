"""Dependency injection for FastAPI routes.

Every collaborator is built once by the application lifespan and parked on
``app.state``; these getters hand them to route handlers so tests can swap
any of them through ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Request

from storefront.core.auth import CurrentUser, get_current_user
from storefront.core.rate_limit import ClientRateLimiter
from storefront.services.discount_service import DiscountEngine
from storefront.services.record_store import RecordStore
from storefront.services.reminder_service import ReminderScheduler
from storefront.services.review_service import ReviewService


def get_record_store(request: Request) -> RecordStore:
    return request.app.state.record_store


def get_discount_engine(request: Request) -> DiscountEngine:
    return request.app.state.discount_engine


def get_reminder_scheduler(request: Request) -> ReminderScheduler:
    return request.app.state.reminder_scheduler


def get_review_service(request: Request) -> ReviewService:
    return request.app.state.review_service


def get_cart_rate_limiter(request: Request) -> ClientRateLimiter:
    return request.app.state.cart_rate_limiter


RecordStoreDep = Annotated[RecordStore, Depends(get_record_store)]
DiscountEngineDep = Annotated[DiscountEngine, Depends(get_discount_engine)]
ReminderSchedulerDep = Annotated[ReminderScheduler, Depends(get_reminder_scheduler)]
ReviewServiceDep = Annotated[ReviewService, Depends(get_review_service)]
CartRateLimiterDep = Annotated[ClientRateLimiter, Depends(get_cart_rate_limiter)]


__all__ = [
    "CartRateLimiterDep",
    "CurrentUser",
    "DiscountEngineDep",
    "RecordStoreDep",
    "ReminderSchedulerDep",
    "ReviewServiceDep",
    "get_cart_rate_limiter",
    "get_current_user",
    "get_discount_engine",
    "get_record_store",
    "get_reminder_scheduler",
    "get_review_service",
]
