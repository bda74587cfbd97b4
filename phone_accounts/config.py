"""Configuration module for phone accounts."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class AccountsConfig:
    """Hashing, verification code and rate limit settings."""
    # bcrypt work factor
    hash_cost: int = field(default_factory=lambda: int(os.getenv("ACCOUNTS_HASH_COST", "10")))

    # Minimum time between two code issuances (milliseconds)
    verification_wait_time: int = field(default_factory=lambda: int(os.getenv("VERIFICATION_WAIT_TIME_MS", "60000")))

    # Issuances allowed before the long cool-down applies
    verification_max_retries: int = field(default_factory=lambda: int(os.getenv("VERIFICATION_MAX_RETRIES", "3")))

    # Long cool-down once max retries is exceeded (milliseconds)
    verification_retries_wait_time: int = field(default_factory=lambda: int(os.getenv("VERIFICATION_RETRIES_WAIT_TIME_MS", "3600000")))

    verification_code_length: int = field(default_factory=lambda: int(os.getenv("VERIFICATION_CODE_LENGTH", "4")))

    # Numbers passed through unchanged by the phone normalizer
    admin_phone_numbers: List[str] = field(default_factory=lambda: _env_list("ADMIN_PHONE_NUMBERS"))

    # Code accepted for any pending verification
    master_verification_code: Optional[str] = field(default_factory=lambda: os.getenv("MASTER_VERIFICATION_CODE") or None)

    # Prepended to numbers given without a leading "+"
    default_country_code: str = field(default_factory=lambda: os.getenv("DEFAULT_COUNTRY_CODE", "55"))

    # Start counting retries again after the long cool-down has elapsed
    reset_retries_after_cooldown: bool = field(default_factory=lambda: os.getenv("VERIFICATION_RESET_RETRIES", "false").lower() == "true")

    users_file: Path = field(default_factory=lambda: Path(os.getenv("ACCOUNTS_USERS_FILE", "data/accounts.json")))

    def validate(self) -> "AccountsConfig":
        """Raise ConfigurationError for settings no component can work with."""
        if not 4 <= self.hash_cost <= 31:
            raise ConfigurationError(f"hash_cost must be between 4 and 31, got {self.hash_cost}")
        if self.verification_code_length < 1:
            raise ConfigurationError("verification_code_length must be at least 1")
        if self.verification_wait_time < 0 or self.verification_retries_wait_time < 0:
            raise ConfigurationError("Verification wait times cannot be negative")
        if self.verification_max_retries < 0:
            raise ConfigurationError("verification_max_retries cannot be negative")
        return self


@dataclass
class SmsConfig:
    """Twilio credentials for code delivery."""
    account_sid: str = field(default_factory=lambda: os.getenv("TWILIO_ACCOUNT_SID", ""))
    auth_token: str = field(default_factory=lambda: os.getenv("TWILIO_AUTH_TOKEN", ""))
    from_number: str = field(default_factory=lambda: os.getenv("TWILIO_PHONE_NUMBER", ""))
    message_template: str = field(default_factory=lambda: os.getenv("SMS_VERIFICATION_TEMPLATE", "Your verification code is {code}"))

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)


@dataclass
class Config:
    """Main configuration container."""
    accounts: AccountsConfig = field(default_factory=AccountsConfig)
    sms: SmsConfig = field(default_factory=SmsConfig)

    jwt_secret_key: Optional[str] = field(default_factory=lambda: os.getenv("JWT_SECRET_KEY"))
    session_token_expire_seconds: int = field(default_factory=lambda: int(os.getenv("SESSION_TOKEN_EXPIRE_SECONDS", str(86400 * 90))))


def load_config() -> Config:
    """Load configuration from environment variables."""
    config = Config()
    config.accounts.validate()
    return config
