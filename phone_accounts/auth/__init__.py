"""
Authentication primitives for phone accounts.

Password verifiers, phone normalization, session tokens and account storage.
"""

from .jwt_handler import JWTHandler, TokenPayload, hash_token
from .password import PasswordHandler, TransportDigest, transport_digest
from .phone import PhoneNormalizer, normalize_phone
from .users import (
    AccountQuery,
    AccountStore,
    AccountUpdate,
    JsonAccountStore,
    PendingVerification,
    PhoneInfo,
    SessionToken,
    UserAccount,
)

__all__ = [
    "JWTHandler",
    "TokenPayload",
    "hash_token",
    "PasswordHandler",
    "TransportDigest",
    "transport_digest",
    "PhoneNormalizer",
    "normalize_phone",
    "AccountQuery",
    "AccountStore",
    "AccountUpdate",
    "JsonAccountStore",
    "PendingVerification",
    "PhoneInfo",
    "SessionToken",
    "UserAccount",
]
