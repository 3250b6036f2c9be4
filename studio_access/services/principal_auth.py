"""
Principal token verification.

The external auth layer issues HS256 JWTs with the principal id in `sub`
and an optional `role` claim (client or admin).
"""

from datetime import UTC, datetime, timedelta

import jwt
from structlog import get_logger

from studio_access.exceptions import AuthenticationError
from studio_access.models.api import PrincipalRole
from studio_access.models.domain import Principal

logger = get_logger(__name__)


class PrincipalTokenService:
    """Encode and verify principal JWTs."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self.secret = secret
        self.algorithm = algorithm

    def issue(self, principal: Principal, expires_in: timedelta = timedelta(hours=1)) -> str:
        """Create a token for principal. Used by tooling and tests."""
        now = datetime.now(UTC)
        payload = {
            "sub": principal.principal_id,
            "role": principal.role.value,
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Principal:
        """
        Verify token and return the principal it names.

        Raises:
            AuthenticationError: Expired, tampered, or missing the sub claim
        """
        if not self.secret:
            raise AuthenticationError("Principal tokens are not configured")

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.warning("principal_token_expired")
            raise AuthenticationError("Token expired") from exc
        except jwt.InvalidTokenError as exc:
            logger.warning("principal_token_invalid", error=str(exc))
            raise AuthenticationError("Invalid token") from exc

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationError("Token has no subject")

        try:
            role = PrincipalRole(payload.get("role", PrincipalRole.CLIENT.value))
        except ValueError as exc:
            raise AuthenticationError(f"Unknown role: {payload.get('role')}") from exc

        return Principal(principal_id=subject, role=role)
