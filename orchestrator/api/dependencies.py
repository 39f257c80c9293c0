"""
FastAPI Dependencies - Authentication and shared clients.

NO DICTIONARIES - All dependencies return typed objects.
"""

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from structlog import get_logger

from orchestrator.config import settings
from orchestrator.exceptions import AuthenticationError
from orchestrator.services.callbacks import verify_worker_secret
from orchestrator.services.stripe_provider import StripeProvider
from orchestrator.services.worker_client import WorkerClient

logger = get_logger(__name__)

# ============================================================================
# User JWT Authentication (tokens issued by the identity provider)
# ============================================================================


@dataclass
class AuthenticatedUser:
    """Authenticated user identity from a bearer token."""

    user_id: str  # sub claim
    email: str | None = None
    name: str | None = None


bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str, secret: str | None = None) -> dict[str, Any] | None:
    """
    Verify an HS256 access token and return its claims.

    Returns None for expired or otherwise invalid tokens.
    """
    key = secret if secret is not None else settings.auth_jwt_secret
    if not key:
        logger.error("auth_jwt_secret_unconfigured")
        return None

    options: dict[str, Any] = {"require": ["sub", "exp"]}
    try:
        if settings.auth_jwt_audience:
            payload: dict[str, Any] = jwt.decode(
                token, key, algorithms=["HS256"], audience=settings.auth_jwt_audience, options=options
            )
        else:
            options["verify_aud"] = False
            payload = jwt.decode(token, key, algorithms=["HS256"], options=options)
        return payload
    except jwt.ExpiredSignatureError:
        logger.warning("auth_token_expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning("auth_token_invalid", error=str(e))
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """
    FastAPI dependency validating the Authorization: Bearer token.

    Usage:
        @router.post("/v1/credits/ensure")
        async def ensure(user: AuthenticatedUser = Depends(get_current_user)):
            ...

    Raises:
        AuthenticationError: header missing, token invalid or expired
    """
    if credentials is None or not credentials.credentials:
        logger.warning("auth_no_token")
        raise AuthenticationError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    subject = str(payload.get("sub") or "")
    if not subject:
        raise AuthenticationError("Invalid token payload")

    metadata = payload.get("user_metadata") or {}
    return AuthenticatedUser(
        user_id=subject,
        email=payload.get("email"),
        name=payload.get("name") or metadata.get("full_name"),
    )


# ============================================================================
# Worker callback authentication
# ============================================================================


async def verify_worker_callback(
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> None:
    """FastAPI dependency enforcing the shared worker secret."""
    verify_worker_secret(x_webhook_secret)


# ============================================================================
# Shared clients
# ============================================================================

_worker_client: WorkerClient | None = None


def get_worker_client() -> WorkerClient:
    """Process-wide worker client (one pooled httpx client)."""
    global _worker_client
    if _worker_client is None:
        _worker_client = WorkerClient()
    return _worker_client


async def close_worker_client() -> None:
    global _worker_client
    if _worker_client is not None:
        await _worker_client.aclose()
        _worker_client = None


def get_payment_provider() -> StripeProvider:
    return StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
