"""
Password handling utilities.

Passwords never reach storage in plain text. A raw password is first reduced
to a SHA-256 transport digest (the same digest a client computes before
sending it), and only that digest is hashed with bcrypt for storage.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Union

import bcrypt

from ..errors import ValidationError

logger = logging.getLogger(__name__)

# bcrypt work factor used when no configuration is passed
BCRYPT_ROUNDS = 10

# The only transport digest algorithm accepted from clients
TRANSPORT_ALGORITHM = "sha-256"


@dataclass(frozen=True)
class TransportDigest:
    """Password pre-hashed by the client before it left the device."""
    digest: str
    algorithm: str = TRANSPORT_ALGORITHM

    def to_dict(self) -> dict:
        return {"digest": self.digest, "algorithm": self.algorithm}


Password = Union[str, TransportDigest, dict]


def transport_digest(password: str) -> TransportDigest:
    """Compute the client-side digest for a plain text password."""
    digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
    return TransportDigest(digest=digest)


def digest_string(password: Password) -> str:
    """
    Extract the string that gets bcrypt'ed.

    Args:
        password: Plain text password, TransportDigest, or a dict with
                  "digest" and "algorithm" keys

    Returns:
        Hex SHA-256 digest of the password

    Raises:
        ValidationError: If the password is empty, malformed, or uses an
                         unsupported algorithm
    """
    if isinstance(password, dict):
        if set(password) != {"digest", "algorithm"}:
            raise ValidationError("Password must have exactly 'digest' and 'algorithm' keys")
        password = TransportDigest(digest=password["digest"], algorithm=password["algorithm"])

    if isinstance(password, str):
        if not password:
            raise ValidationError("Password may not be empty")
        return transport_digest(password).digest

    if isinstance(password, TransportDigest):
        if password.algorithm != TRANSPORT_ALGORITHM:
            raise ValidationError(
                f"Invalid password hash algorithm. Only '{TRANSPORT_ALGORITHM}' is allowed."
            )
        if not isinstance(password.digest, str) or not password.digest:
            raise ValidationError("Password digest may not be empty")
        return password.digest

    raise ValidationError("Password must be a string or a digest object")


class PasswordHandler:
    """
    Derives and checks bcrypt verifiers for passwords.

    Usage:
        handler = PasswordHandler(rounds=10)
        verifier = handler.hash("my_password")
        is_valid = handler.verify(transport_digest("my_password"), verifier)
    """

    def __init__(self, rounds: int = BCRYPT_ROUNDS):
        """
        Initialize password handler.

        Args:
            rounds: bcrypt work factor (default: 10)
        """
        self.rounds = rounds

    def hash(self, password: Password) -> str:
        """
        Derive the storage verifier for a password.

        Returns:
            Self-describing bcrypt hash ($2b$<rounds>$<salt+hash>)
        """
        digest = digest_string(password)
        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(digest.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    def verify(self, password: Password, hashed: str) -> bool:
        """
        Check a presented password against a stored verifier.

        Cost and salt are read back from the stored hash, so verifiers
        created with an older work factor keep working.

        Raises:
            ValidationError: If the presented password is malformed
        """
        digest = digest_string(password)
        if not hashed:
            return False

        try:
            return bcrypt.checkpw(digest.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError as e:
            logger.warning(f"Stored password hash is unreadable: {e}")
            return False

    def needs_rehash(self, hashed: str) -> bool:
        """
        Check if a hash was created with a different work factor.

        bcrypt hash format: $2b$rounds$salt+hash
        """
        parts = hashed.split("$")
        if len(parts) >= 3 and parts[2].isdigit():
            return int(parts[2]) != self.rounds
        return True
