"""
Phone number accounts: password login and SMS phone verification.
"""

from .config import Config, AccountsConfig, SmsConfig, load_config
from .errors import (
    AuthError,
    AuthFailure,
    ConfigurationError,
    ConflictError,
    InternalError,
    NotFoundError,
    PhoneAccountsError,
    RateLimitError,
    ValidationError,
)
from .services import CallContext, PhoneAccountService, ServiceContext, create_services

__version__ = "1.0.0"

__all__ = [
    "Config",
    "AccountsConfig",
    "SmsConfig",
    "load_config",
    "AuthError",
    "AuthFailure",
    "ConfigurationError",
    "ConflictError",
    "InternalError",
    "NotFoundError",
    "PhoneAccountsError",
    "RateLimitError",
    "ValidationError",
    "CallContext",
    "PhoneAccountService",
    "ServiceContext",
    "create_services",
]
