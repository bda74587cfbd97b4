"""
Pytest configuration and shared fixtures.

This module provides common fixtures for testing:
- Configuration with a cheap bcrypt cost
- Temporary JSON account storage
- A recording SMS sender and a controllable clock
- Wired services
"""

import os
import sys
import json
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables before imports
os.environ["JWT_SECRET_KEY"] = "test_jwt_secret_key_for_testing_only_32bytes!"

from phone_accounts.auth import JsonAccountStore, PasswordHandler, JWTHandler
from phone_accounts.config import AccountsConfig, Config, SmsConfig
from phone_accounts.services import PhoneAccountService, ServiceContext, SmsSender


# =============================================================================
# Test doubles
# =============================================================================

class RecordingSmsSender(SmsSender):
    """SMS sender that keeps every message instead of sending it."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.raise_error = False

    def send_code(self, phone: str, code: str) -> dict:
        if self.raise_error:
            raise ConnectionError("SMS gateway unreachable")
        if self.fail:
            return {"success": False, "error": "Delivery refused"}
        self.sent.append((phone, code))
        return {"success": True, "sid": f"SM{len(self.sent)}"}

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0):
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes)


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture(scope="session")
def test_config():
    """Test configuration values."""
    return {
        "jwt_secret": "test_jwt_secret_key_for_testing_only_32bytes!",
        "test_phone": "+8618000000000",
        "other_phone": "+5511999999999",
        "admin_phone": "+10000",
        "test_password": "123456",
        "master_code": "0000",
    }


@pytest.fixture
def temp_user_file() -> Generator[Path, None, None]:
    """Create a temporary file for account storage."""
    with tempfile.NamedTemporaryFile(
        mode='w', suffix='.json', delete=False
    ) as f:
        json.dump({}, f)
        temp_path = Path(f.name)

    yield temp_path

    # Cleanup
    if temp_path.exists():
        temp_path.unlink()


@pytest.fixture
def temp_data_dir() -> Generator[Path, None, None]:
    """Create a temporary data directory."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def accounts_config(temp_user_file, test_config) -> AccountsConfig:
    """Account settings with a cheap bcrypt cost."""
    return AccountsConfig(
        hash_cost=4,
        verification_wait_time=60_000,
        verification_max_retries=3,
        verification_retries_wait_time=3_600_000,
        verification_code_length=4,
        admin_phone_numbers=[test_config["admin_phone"]],
        master_verification_code=test_config["master_code"],
        default_country_code="55",
        reset_retries_after_cooldown=False,
        users_file=temp_user_file,
    )


@pytest.fixture
def app_config(accounts_config, test_config) -> Config:
    return Config(
        accounts=accounts_config,
        sms=SmsConfig(account_sid="", auth_token="", from_number="", message_template="Code: {code}"),
        jwt_secret_key=test_config["jwt_secret"],
        session_token_expire_seconds=3600,
    )


# =============================================================================
# Components
# =============================================================================

@pytest.fixture
def account_store(temp_user_file) -> JsonAccountStore:
    """Create an account store with temporary file."""
    return JsonAccountStore(file_path=temp_user_file)


@pytest.fixture
def password_handler() -> PasswordHandler:
    """Create a PasswordHandler with the minimum bcrypt cost."""
    return PasswordHandler(rounds=4)


@pytest.fixture
def jwt_handler(test_config) -> JWTHandler:
    """Create a JWTHandler with test secret."""
    return JWTHandler(secret_key=test_config["jwt_secret"], expires_in=3600)


@pytest.fixture
def sms_sender() -> RecordingSmsSender:
    return RecordingSmsSender()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 10, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def services_context(app_config, account_store, sms_sender, clock) -> ServiceContext:
    """Create a fully wired ServiceContext."""
    return ServiceContext.create(
        config=app_config,
        store=account_store,
        sms_sender=sms_sender,
        clock=clock
    )


@pytest.fixture
def account_service(services_context) -> PhoneAccountService:
    return PhoneAccountService(services_context)


@pytest.fixture
def sample_account(account_store, test_config):
    """An unverified account without password."""
    return account_store.insert(account_store.new_account(test_config["test_phone"]))


@pytest.fixture
def issued_code(account_service, sms_sender, test_config) -> str:
    """Request a code for the test phone and return what was sent."""
    account_service.request_verification(test_config["test_phone"])
    return sms_sender.last_code


@pytest.fixture
def verified_account(account_service, issued_code, test_config):
    """Account whose phone is verified and whose password is set."""
    account_service.verify_phone(test_config["test_phone"], issued_code, test_config["test_password"])
    return account_service.find_account(test_config["test_phone"])


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
