"""
Services layer for phone accounts.

This module provides the core business logic as reusable services
that can be consumed by any transport.
"""

from .base import BaseService, ServiceContext
from .account_service import PhoneAccountService, LoginResult
from .code_issuer import VerificationCodeIssuer, generate_code
from .code_validator import VerificationValidator, VerificationResult
from .login_service import AuthenticationHandler, LoginSelector
from .session_service import CallContext, SessionTokenCoordinator
from .sms_service import SmsSender, TwilioSmsSender

__all__ = [
    # Base
    "BaseService",
    "ServiceContext",
    # Services
    "PhoneAccountService",
    "VerificationCodeIssuer",
    "VerificationValidator",
    "AuthenticationHandler",
    "SessionTokenCoordinator",
    "SmsSender",
    "TwilioSmsSender",
    # Data classes
    "CallContext",
    "LoginResult",
    "LoginSelector",
    "VerificationResult",
    "generate_code",
]


def create_services(context: ServiceContext = None, **kwargs) -> PhoneAccountService:
    """
    Factory function to create the account service with proper dependencies.

    Args:
        context: Optional ServiceContext (created from kwargs if not provided)
        **kwargs: Passed to ServiceContext.create (config, store, sms_sender, clock)

    Returns:
        PhoneAccountService
    """
    if context is None:
        context = ServiceContext.create(**kwargs)
    return PhoneAccountService(context)
