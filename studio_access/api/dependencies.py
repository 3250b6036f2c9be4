"""
FastAPI Dependencies - principal identity and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studio_access.config import settings
from studio_access.db.session import get_read_db, get_write_db
from studio_access.exceptions import AuthenticationError
from studio_access.models.domain import Principal
from studio_access.services.content import ContentService
from studio_access.services.delivery import SignedDeliveryService
from studio_access.services.entitlements import EntitlementStore
from studio_access.services.payment_provider import PaymentProvider
from studio_access.services.paystack_provider import PaystackProvider
from studio_access.services.principal_auth import PrincipalTokenService
from studio_access.services.reconciliation import ReconciliationService
from studio_access.services.storage import StorageBackend, get_storage
from studio_access.services.stripe_provider import StripeProvider

logger = get_logger(__name__)

# Bearer token scheme for principal JWTs
bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# Principal Identity
# ============================================================================


@lru_cache(maxsize=1)
def get_token_service() -> PrincipalTokenService:
    return PrincipalTokenService(settings.principal_jwt_secret, settings.principal_jwt_algorithm)


async def get_optional_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    tokens: PrincipalTokenService = Depends(get_token_service),
) -> Principal | None:
    """
    Optional principal authentication - returns None if no token provided.

    A token that is present but invalid is rejected, never downgraded to
    anonymous.

    Raises:
        HTTPException 401 if the token is invalid
    """
    if credentials is None:
        return None

    try:
        return tokens.verify(credentials.credentials)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def get_principal(
    principal: Principal | None = Depends(get_optional_principal),
) -> Principal:
    """
    Required principal authentication.

    Raises:
        HTTPException 401 if no token was supplied
    """
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


async def get_admin_principal(principal: Principal = Depends(get_principal)) -> Principal:
    """
    Admin-only routes.

    Raises:
        HTTPException 403 if the principal is not an admin
    """
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return principal


# ============================================================================
# Services
# ============================================================================


def build_payment_provider(name: str) -> PaymentProvider:
    """Construct a provider by name from settings."""
    if name == "stripe":
        return StripeProvider(
            api_key=settings.stripe_api_key,
            webhook_secret=settings.stripe_webhook_secret,
        )
    return PaystackProvider(
        secret_key=settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        timeout_seconds=settings.paystack_timeout_seconds,
    )


@lru_cache(maxsize=4)
def get_payment_provider(name: str | None = None) -> PaymentProvider:
    """Process-wide provider instance; defaults to the configured provider."""
    return build_payment_provider(name or settings.payment_provider)


def get_default_payment_provider() -> PaymentProvider:
    return get_payment_provider(settings.payment_provider)


def get_paystack_provider() -> PaymentProvider:
    return get_payment_provider("paystack")


def get_stripe_provider() -> PaymentProvider:
    return get_payment_provider("stripe")


def get_storage_backend() -> StorageBackend:
    return get_storage()


async def get_store(db: AsyncSession = Depends(get_write_db)) -> EntitlementStore:
    return EntitlementStore(db)


async def get_read_store(db: AsyncSession = Depends(get_read_db)) -> EntitlementStore:
    return EntitlementStore(db)


async def get_reconciliation_service(
    store: EntitlementStore = Depends(get_store),
    provider: PaymentProvider = Depends(get_default_payment_provider),
) -> ReconciliationService:
    return ReconciliationService(store, provider)


async def get_delivery_service(
    store: EntitlementStore = Depends(get_store),
    storage: StorageBackend = Depends(get_storage_backend),
) -> SignedDeliveryService:
    return SignedDeliveryService(store, storage)


async def get_content_service(
    store: EntitlementStore = Depends(get_store),
    storage: StorageBackend = Depends(get_storage_backend),
) -> ContentService:
    return ContentService(store, storage)
