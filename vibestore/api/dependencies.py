"""
FastAPI Dependencies - Authentication, authorization and payment provider.

NO DICTIONARIES - All dependencies return typed objects.
"""

from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vibestore.config import settings
from vibestore.db.session import get_write_db
from vibestore.exceptions import (
    AuthenticationError,
    AuthorizationError,
    PaymentsNotConfiguredError,
)
from vibestore.models.domain import AuthenticatedUser
from vibestore.services.moderation import ModerationService
from vibestore.services.payment_provider import PaymentProvider
from vibestore.services.sandbox_provider import SandboxProvider
from vibestore.services.stripe_provider import StripeProvider

logger = get_logger(__name__)

# Bearer token scheme for Supabase access tokens
bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# User JWT Authentication
# ============================================================================


def decode_access_token(token: str) -> AuthenticatedUser:
    """
    Verify a Supabase access token and extract the user.

    Supabase signs access tokens with the project JWT secret (HS256); the
    user id is the `sub` claim.

    Raises:
        AuthenticationError: If the token is expired, forged or lacks a user id
    """
    try:
        claims = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=settings.supabase_jwt_audience,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError(f"Invalid token: {exc}") from exc

    try:
        user_id = UUID(str(claims.get("sub")))
    except ValueError as exc:
        raise AuthenticationError("Token subject is not a user id") from exc

    return AuthenticatedUser(user_id=user_id, email=claims.get("email"))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """
    FastAPI dependency to validate the Supabase access token.

    Accepts: Authorization: Bearer {access_token}

    Usage:
        @router.get("/v1/entitlements")
        async def list_entitlements(user: AuthenticatedUser = Depends(get_current_user)):
            ...
    """
    if not settings.supabase_jwt_secret:
        logger.error("supabase_jwt_secret_missing")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication not configured",
        )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_access_token(credentials.credentials)
    except AuthenticationError as exc:
        logger.warning("user_token_rejected", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def require_admin(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> AuthenticatedUser:
    """FastAPI dependency that only lets admin profiles through."""
    if not await ModerationService(db).is_admin(user.user_id):
        error = AuthorizationError("admin")
        logger.warning("admin_access_denied", user_id=str(user.user_id))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    return user


# ============================================================================
# Payment Provider
# ============================================================================


def build_payment_provider() -> PaymentProvider:
    """
    Build the configured payment provider.

    Raises:
        PaymentsNotConfiguredError: If Stripe credentials are absent and
            sandbox mode is off
    """
    if not settings.payments_enabled:
        raise PaymentsNotConfiguredError()

    if settings.payments_sandbox_mode:
        return SandboxProvider(
            webhook_secret=settings.stripe_webhook_secret,
            webhook_tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )

    return StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
        timeout_seconds=settings.checkout_timeout_seconds,
        webhook_tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
    )


def get_optional_payment_provider() -> PaymentProvider | None:
    """Provider, or None when payments are not configured."""
    try:
        return build_payment_provider()
    except PaymentsNotConfiguredError:
        logger.warning("payments_not_configured", warnings=settings.payment_config_warnings())
        return None


def get_payment_provider(
    provider: PaymentProvider | None = Depends(get_optional_payment_provider),
) -> PaymentProvider:
    """FastAPI dependency: 503 when payments are not configured."""
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider not configured",
        )
    return provider
