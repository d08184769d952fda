"""
Identity provider boundary.

Authentication itself lives in an external identity service. This module
only defines what the linking services need from it (a stable account id
and credential verification) and a JWT adapter that reads the account id
from HS256 bearer tokens issued by that service.
"""

import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import jwt

from .errors import AuthError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_ACCESS_TOKEN_EXPIRE_HOURS = 8

CredentialVerifier = Callable[[str, str], Awaitable[Optional[str]]]


class IdentityProvider(Protocol):
    """What the linking services consume from the identity service."""

    async def verify_credentials(self, email: str, secret: str) -> str:
        """Return the account id for valid credentials, raise AuthError otherwise."""
        ...

    def current_account_id(self, credential: Optional[str] = None) -> Optional[str]:
        """Return the account id behind a credential, or None."""
        ...


def get_jwt_secret() -> str:
    """
    Shared signing key for identity tokens.

    Outside production a per-process random key is used when JWT_SECRET is
    unset, so tokens never survive a restart.
    """
    secret = os.environ.get("JWT_SECRET")
    if secret:
        return secret

    environment = os.environ.get("APP_ENVIRONMENT", "development")
    if environment in ("production", "prod", "staging"):
        raise RuntimeError("JWT_SECRET environment variable is required in production")

    logger.warning("JWT_SECRET not set - using a generated development secret")
    return f"DEV-ONLY-{secrets.token_hex(32)}"


class JwtIdentityProvider:
    """
    Identity provider adapter for HS256 bearer tokens.

    The account id is the token's ``sub`` claim. Credential verification is
    delegated to the identity service through ``credential_verifier``.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        credential_verifier: Optional[CredentialVerifier] = None,
        algorithm: str = JWT_ALGORITHM,
    ):
        self._secret = secret or get_jwt_secret()
        self._verifier = credential_verifier
        self._algorithm = algorithm

    def create_token(
        self,
        account_id: str,
        expires_delta: Optional[timedelta] = None,
        **claims: Any,
    ) -> str:
        """
        Issue a token for an account.

        Used for service-to-service calls and tests; end-user tokens come
        from the identity service.
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": account_id,
            "iat": now,
            "exp": now + (expires_delta or timedelta(hours=JWT_ACCESS_TOKEN_EXPIRE_HOURS)),
            "type": "access",
            **claims,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode_token(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate a token.

        Raises:
            AuthError: If the token is invalid, expired or has no subject.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError as e:
            raise AuthError("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthError("Invalid token") from e

        if not payload.get("sub"):
            raise AuthError("Token has no subject")
        return payload

    def current_account_id(self, credential: Optional[str] = None) -> Optional[str]:
        if not credential:
            return None
        try:
            return self.decode_token(credential)["sub"]
        except AuthError:
            return None

    async def verify_credentials(self, email: str, secret: str) -> str:
        if self._verifier is None:
            raise AuthError("Credential verification is not configured")

        account_id = await self._verifier(email, secret)
        if not account_id:
            raise AuthError("Invalid credentials")
        return account_id
