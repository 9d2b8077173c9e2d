"""Rate limiting.

``limiter`` is the slowapi instance backing the app-wide default limit.
``ClientRateLimiter`` answers the explicit per-client check that cart
endpoints consult before touching any session state.
"""

from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string
from slowapi import Limiter
from starlette.requests import Request

from storefront.core.config import settings


def get_client_ip(request: Request) -> str:
    """Extract the real client IP behind Cloudflare / reverse proxy."""
    return (
        request.headers.get("CF-Connecting-IP")
        or request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        or request.headers.get("X-Real-IP", "").strip()
        or (request.client.host if request.client else "unknown")
    )


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[settings.default_rate_limit],
    storage_uri=settings.rate_limit_storage_uri,
)


@dataclass(frozen=True, slots=True)
class RateLimitStatus:
    """Outcome of a rate-limit check."""

    allowed: bool
    remaining: int
    reset_at: float


class ClientRateLimiter:
    """Fixed-window counter per client key with an explicit reset time."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        storage_uri: str = "memory://",
    ) -> None:
        self.item = RateLimitItemPerSecond(max_requests, window_seconds)
        self.storage = storage_from_string(f"async+{storage_uri}")
        self.strategy = FixedWindowRateLimiter(self.storage)
        self.enabled = True

    async def check(self, client_key: str) -> RateLimitStatus:
        """Count one request for ``client_key`` and report whether it may proceed."""
        if not self.enabled:
            return RateLimitStatus(allowed=True, remaining=self.item.amount, reset_at=0.0)

        allowed = await self.strategy.hit(self.item, client_key)
        stats = await self.strategy.get_window_stats(self.item, client_key)
        return RateLimitStatus(
            allowed=allowed,
            remaining=stats.remaining,
            reset_at=stats.reset_time,
        )

    async def reset(self) -> None:
        await self.storage.reset()
