"""JWT bearer authentication for FastAPI using the auth server's JWKS."""

import asyncio
import logging
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient, PyJWKClientError

from storefront.core.config import settings
from storefront.core.errors import UnauthorizedError

logger = logging.getLogger(__name__)

# HTTP Bearer token security scheme
bearer_scheme = HTTPBearer(auto_error=False)

# JWKS client for fetching public keys from the auth server
_jwks_client: PyJWKClient | None = None
_jwks_lock = asyncio.Lock()


def get_jwks_client() -> PyJWKClient:
    """Get or create JWKS client."""
    global _jwks_client
    if _jwks_client is None:
        jwks_url = settings.auth_jwks_url or f"{settings.auth_url}/api/auth/jwks"
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True)
    return _jwks_client


async def verify_token(token: str) -> dict[str, Any]:
    """Verify a JWT against the auth server's JWKS.

    Args:
        token: The JWT token to verify

    Returns:
        The decoded token payload

    Raises:
        UnauthorizedError: If the token is invalid or expired
        HTTPException: 503 if the signing keys cannot be fetched
    """
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        payload: dict[str, Any] = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "EdDSA"],
            audience=settings.auth_url,
            issuer=settings.auth_url,
            options={"verify_exp": True, "verify_aud": True, "verify_iss": True},
        )
        return payload
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except PyJWKClientError as e:
        # Reset cached client so next request retries fresh
        async with _jwks_lock:
            global _jwks_client
            _jwks_client = None
        logger.error("JWKS fetch failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        )
    except jwt.InvalidTokenError as e:
        raise UnauthorizedError(f"Invalid token: {e}")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    """Decoded JWT payload of the caller; 401 when no bearer token is sent."""
    if credentials is None:
        raise UnauthorizedError("Not authenticated")

    return await verify_token(credentials.credentials)


CurrentUser = Annotated[dict[str, Any], Depends(get_current_user)]
