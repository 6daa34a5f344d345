"""
API Dependencies

FastAPI dependency injection for authentication and services.

Security: session tokens are HS256 JWTs verified with the configured secret.
Webhooks are verified with the platform's base64 HMAC-SHA256 signature.
Never decode or trust a payload without verification.
"""

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from subscribe_save.config.settings import get_settings
from subscribe_save.domain.subscription import Actor, ActorRole
from subscribe_save.infrastructure.services.billing_signal_service import BillingSignalService
from subscribe_save.infrastructure.services.ingestion_service import IngestionService
from subscribe_save.infrastructure.services.pickup_service import PickupService
from subscribe_save.infrastructure.services.plan_lookup_service import PlanLookupService
from subscribe_save.infrastructure.services.rollover_service import RolloverService
from subscribe_save.infrastructure.services.subscription_service import SubscriptionService


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """Verified caller: which shop, and who within it."""
    shop: str
    actor: Actor


# =============================================================================
# Session tokens
# =============================================================================

def shop_from_dest(dest: str) -> str:
    """Shop domain from a token's dest claim (scheme stripped)."""
    parsed = urlparse(dest if "://" in dest else f"https://{dest}")
    return parsed.netloc or parsed.path


def decode_session_token(token: str, secret: str, audience: Optional[str] = None) -> dict:
    """Verify an HS256 session token and return its claims."""
    options = {"require": ["exp", "dest"]}
    if audience is None:
        options["verify_aud"] = False
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        audience=audience,
        options=options,
    )


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    """
    Extract and verify the acting identity from a session token.

    Claims:
        dest: shop URL the token was issued for
        role: "staff" for shop staff, anything else is a customer
        email: customer email (required for customers)

    Raises:
        HTTPException 401: token missing, expired, or invalid
        HTTPException 500: no verification secret configured
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    settings = get_settings()
    if not settings.session_secret:
        logger.error("SESSION_TOKEN_SECRET/SHOPIFY_API_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured",
        )

    try:
        claims = decode_session_token(
            credentials.credentials, settings.session_secret, settings.shopify_api_key
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.InvalidTokenError as e:
        logger.warning("Session token verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    shop = shop_from_dest(claims["dest"])
    if claims.get("role") == "staff":
        return AuthContext(shop=shop, actor=Actor.staff(claims.get("email")))

    email = claims.get("email")
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token does not identify a customer",
        )
    return AuthContext(shop=shop, actor=Actor.customer(email))


async def require_staff(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if auth.actor.role != ActorRole.STAFF:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required",
        )
    return auth


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """Bearer check for the scheduled rollover trigger."""
    settings = get_settings()
    if not settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="CRON_SECRET not configured",
        )
    if not credentials or not hmac.compare_digest(credentials.credentials, settings.cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
        )


# =============================================================================
# Webhook signatures
# =============================================================================

def verify_webhook_hmac(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Compare the base64 HMAC-SHA256 of the raw body with the header value."""
    if not signature or not secret:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, signature)


# =============================================================================
# Service providers
# =============================================================================

_subscription_service: Optional[SubscriptionService] = None
_ingestion_service: Optional[IngestionService] = None
_billing_signal_service: Optional[BillingSignalService] = None
_rollover_service: Optional[RolloverService] = None
_pickup_service: Optional[PickupService] = None
_plan_lookup_service: Optional[PlanLookupService] = None


def get_subscription_service() -> SubscriptionService:
    """Get or create the subscription service singleton."""
    global _subscription_service
    if _subscription_service is None:
        _subscription_service = SubscriptionService()
    return _subscription_service


def get_ingestion_service() -> IngestionService:
    """Get or create the ingestion service singleton."""
    global _ingestion_service
    if _ingestion_service is None:
        _ingestion_service = IngestionService()
    return _ingestion_service


def get_billing_signal_service() -> BillingSignalService:
    """Get or create the billing signal service singleton."""
    global _billing_signal_service
    if _billing_signal_service is None:
        _billing_signal_service = BillingSignalService()
    return _billing_signal_service


def get_rollover_service() -> RolloverService:
    """Get or create the rollover service singleton."""
    global _rollover_service
    if _rollover_service is None:
        _rollover_service = RolloverService()
    return _rollover_service


def get_pickup_service() -> PickupService:
    """Get or create the pickup service singleton."""
    global _pickup_service
    if _pickup_service is None:
        _pickup_service = PickupService()
    return _pickup_service


def get_plan_lookup_service() -> PlanLookupService:
    """Get or create the plan lookup service singleton."""
    global _plan_lookup_service
    if _plan_lookup_service is None:
        _plan_lookup_service = PlanLookupService()
    return _plan_lookup_service
