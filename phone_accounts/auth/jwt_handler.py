"""
Session token handler.

Login sessions are HS256 JWTs. Accounts only ever store the SHA-256 hash of
a token, so a token stays usable exactly as long as its hash is present on
the account and its signature and expiry check out.
"""

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, asdict
from typing import Optional

from jose import jwt, JWTError

logger = logging.getLogger(__name__)

DEFAULT_SECRET_KEY = "phone-accounts-secret-key-change-in-production"
ALGORITHM = "HS256"
SESSION_TOKEN_EXPIRE_SECONDS = 86400 * 90  # 90 days


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest stored in place of a raw token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class TokenPayload:
    """JWT session token payload."""
    user_id: str
    connection_id: str
    jti: str  # Random id so two logins in the same second differ
    exp: int  # Expiration timestamp
    iat: int  # Issued at timestamp

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TokenPayload":
        return cls(**data)


class JWTHandler:
    """Creates and decodes session tokens."""

    def __init__(self, secret_key: Optional[str] = None, expires_in: int = SESSION_TOKEN_EXPIRE_SECONDS):
        """
        Initialize JWT handler.

        Args:
            secret_key: Secret key for signing tokens (default: insecure
                        development key, logged as a warning)
            expires_in: Token lifetime in seconds
        """
        self.secret_key = secret_key or DEFAULT_SECRET_KEY
        self.expires_in = expires_in

        if self.secret_key == DEFAULT_SECRET_KEY:
            logger.warning(
                "Using default JWT secret key. "
                "Set JWT_SECRET_KEY environment variable in production!"
            )

    def create_session_token(
        self,
        user_id: str,
        connection_id: str,
        expires_in: Optional[int] = None
    ) -> str:
        """
        Create a session token for a connection.

        Args:
            user_id: Account id the session belongs to
            connection_id: Connection that performed the login
            expires_in: Custom expiration in seconds

        Returns:
            Encoded JWT token string
        """
        now = int(time.time())
        lifetime = self.expires_in if expires_in is None else expires_in

        payload = TokenPayload(
            user_id=user_id,
            connection_id=connection_id,
            jti=secrets.token_hex(16),
            exp=now + lifetime,
            iat=now,
        )

        token = jwt.encode(payload.to_dict(), self.secret_key, algorithm=ALGORITHM)
        logger.debug(f"Created session token for user {user_id}, expires in {lifetime}s")
        return token

    def verify_token(self, token: str) -> Optional[TokenPayload]:
        """
        Verify and decode a token.

        Returns:
            TokenPayload if valid, None if invalid or expired
        """
        if not token:
            return None

        try:
            data = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])
            payload = TokenPayload.from_dict(data)
        except (JWTError, TypeError) as e:
            logger.debug(f"Token verification failed: {e}")
            return None

        if payload.exp < int(time.time()):
            logger.debug("Token expired")
            return None

        return payload
