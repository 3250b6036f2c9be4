"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Access decisions (requires authentication, requires payment, denied) and
duplicate payment events are NOT exceptions; they are returned values.
"""

from uuid import UUID

from studio_access.models.api import ContentKind


class StudioAccessError(Exception):
    """Base exception for all studio access errors."""

    pass


class ContentNotFoundError(StudioAccessError):
    """Raised when a gallery or upload doesn't exist."""

    def __init__(self, kind: ContentKind, content_id: UUID) -> None:
        self.kind = kind
        self.content_id = content_id
        super().__init__(f"Content not found: {kind.value}/{content_id}")


class PaymentIntentNotFoundError(StudioAccessError):
    """Raised when a payment reference has no recorded intent."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Unknown payment reference: {reference}")


class PurchaseNotAllowedError(StudioAccessError):
    """Raised when a purchase cannot be initiated for the content."""

    def __init__(self, kind: ContentKind, content_id: UUID, reason: str) -> None:
        self.kind = kind
        self.content_id = content_id
        self.reason = reason
        super().__init__(f"Purchase not allowed for {kind.value}/{content_id}: {reason}")


class InvalidSignatureError(StudioAccessError):
    """Raised when a webhook payload fails its authenticity check."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class PaymentProviderError(StudioAccessError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class StorageError(StudioAccessError):
    """Raised when a storage operation (put, sign, delete) fails. Retryable."""

    def __init__(self, operation: str, key: str, message: str) -> None:
        self.operation = operation
        self.key = key
        self.message = message
        super().__init__(f"Storage {operation} failed for {key}: {message}")


class WriteVerificationError(StudioAccessError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(StudioAccessError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class DatabaseError(StudioAccessError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")


class AuthenticationError(StudioAccessError):
    """Raised when the supplied principal token is invalid."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(StudioAccessError):
    """Raised when the principal may not manage the content."""

    def __init__(self, required_permission: str) -> None:
        self.required_permission = required_permission
        super().__init__(f"Authorization failed: missing permission {required_permission}")
