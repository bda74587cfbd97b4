"""
Base service classes and shared context.

The ServiceContext holds all shared state and dependencies that services
need. Everything is built once from an explicit Config; nothing reads
global settings after construction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..auth import AccountStore, JsonAccountStore, JWTHandler, PasswordHandler, PhoneNormalizer
from ..auth.users import utcnow
from ..config import Config, load_config
from ..errors import ConfigurationError
from .code_issuer import VerificationCodeIssuer
from .code_validator import VerificationValidator
from .login_service import AuthenticationHandler
from .session_service import SessionTokenCoordinator
from .sms_service import SmsSender, TwilioSmsSender

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    """
    Shared context for all services.

    All services receive this context and use it to access shared resources.
    """
    config: Config
    store: AccountStore
    passwords: PasswordHandler
    normalizer: PhoneNormalizer
    sessions: SessionTokenCoordinator
    issuer: VerificationCodeIssuer
    validator: VerificationValidator
    authenticator: AuthenticationHandler

    @classmethod
    def create(
        cls,
        config: Optional[Config] = None,
        store: Optional[AccountStore] = None,
        sms_sender: Optional[SmsSender] = None,
        clock: Callable[[], datetime] = utcnow
    ) -> "ServiceContext":
        """
        Factory method to create a ServiceContext with all dependencies.

        Args:
            config: Optional config (loads from env if not provided)
            store: Optional account store (JSON file from config if not provided)
            sms_sender: Optional SMS sender (Twilio from config if not provided)
            clock: Source of the current time, used for rate limiting

        Raises:
            ConfigurationError: If settings are invalid or no SMS sender can be built
        """
        cfg = config or load_config()
        accounts = cfg.accounts.validate()

        if sms_sender is None:
            sms_sender = TwilioSmsSender(cfg.sms)
        if not isinstance(sms_sender, SmsSender):
            raise ConfigurationError("sms_sender must implement SmsSender")

        store = store or JsonAccountStore(accounts.users_file)
        passwords = PasswordHandler(rounds=accounts.hash_cost)
        normalizer = PhoneNormalizer(accounts.admin_phone_numbers, accounts.default_country_code)
        jwt_handler = JWTHandler(cfg.jwt_secret_key, expires_in=cfg.session_token_expire_seconds)
        sessions = SessionTokenCoordinator(store, jwt_handler)

        logger.debug("Service context created")
        return cls(
            config=cfg,
            store=store,
            passwords=passwords,
            normalizer=normalizer,
            sessions=sessions,
            issuer=VerificationCodeIssuer(store, sms_sender, accounts, clock=clock),
            validator=VerificationValidator(store, passwords, sessions, normalizer, accounts),
            authenticator=AuthenticationHandler(store, passwords, normalizer),
        )


class BaseService:
    """
    Base class for all services.

    Each service receives the shared context and provides focused functionality.
    """

    def __init__(self, context: ServiceContext):
        self.context = context

    @property
    def config(self) -> Config:
        return self.context.config

    @property
    def store(self) -> AccountStore:
        return self.context.store
