"""
Verification code issuance.

Codes are rate limited in two tiers: a short wait between any two
issuances, and a long cool-down once an account has asked for more than
`verification_max_retries` codes.
"""

import logging
import math
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..auth import AccountQuery, AccountStore, AccountUpdate, PendingVerification
from ..auth.users import utcnow
from ..config import AccountsConfig
from ..errors import InternalError, NotFoundError, RateLimitError, ValidationError
from .sms_service import SmsSender

logger = logging.getLogger(__name__)

# Zero is never used so codes have no leading-zero ambiguity
CODE_ALPHABET = "123456789"


def generate_code(length: int = 4) -> str:
    """Random numeric code of `length` digits, each in 1-9."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class VerificationCodeIssuer:
    """Generates, stores and sends one-time verification codes."""

    def __init__(
        self,
        store: AccountStore,
        sms_sender: SmsSender,
        config: AccountsConfig,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.sms = sms_sender
        self.config = config
        self.clock = clock

    def check_rate_limit(self, verification: Optional[PendingVerification], now: datetime):
        """
        Raise RateLimitError if a new code may not be issued yet.

        Args:
            verification: The account's current verification record
            now: Current time
        """
        if verification is None:
            return

        next_allowed = verification.last_issued_at + timedelta(milliseconds=self.config.verification_wait_time)
        if now < next_allowed:
            seconds = math.ceil((next_allowed - now).total_seconds())
            logger.warning(f"Verification requested too soon for {verification.target_phone}")
            raise RateLimitError(
                f"Too often retries, try again in {seconds} seconds.",
                wait=seconds,
                unit="seconds"
            )

        if verification.retry_count > self.config.verification_max_retries:
            next_allowed = verification.last_issued_at + timedelta(
                milliseconds=self.config.verification_retries_wait_time
            )
            if now < next_allowed:
                minutes = math.ceil((next_allowed - now).total_seconds() / 60)
                logger.warning(f"Too many verification requests for {verification.target_phone}")
                raise RateLimitError(
                    f"Too many retries, try again in {minutes} minutes.",
                    wait=minutes,
                    unit="minutes"
                )

    def _previous_retries(self, verification: Optional[PendingVerification]) -> int:
        if verification is None:
            return 0
        # Only reached once the long cool-down is over (check_rate_limit passed)
        if (self.config.reset_retries_after_cooldown
                and verification.retry_count > self.config.verification_max_retries):
            return 0
        return verification.retry_count

    def issue(self, account_id: str, phone: Optional[str] = None):
        """
        Issue a new code for an account and send it by SMS.

        Args:
            account_id: Account to verify
            phone: Number to send to (default: the account's phone)

        Raises:
            NotFoundError: If the account does not exist
            ValidationError: If there is no phone to send to
            RateLimitError: If a code was requested too recently
            InternalError: If the SMS could not be sent; the stored code
                           stays valid
        """
        account = self.store.get_by_id(account_id)
        if account is None:
            raise NotFoundError("Can't find user")

        if not phone and account.phone:
            phone = account.phone.number
        if not phone:
            raise ValidationError("No such phone for user.")

        now = self.clock()
        current = account.verification
        self.check_rate_limit(current, now)

        record = PendingVerification(
            code=generate_code(self.config.verification_code_length),
            target_phone=phone,
            retry_count=self._previous_retries(current) + 1,
            last_issued_at=now,
        )

        # Matching on the previous issuance makes check-and-write atomic
        query = AccountQuery(
            account_id=account.account_id,
            verification_last_issued_at=current.last_issued_at if current else None,
        )
        if self.store.conditional_update(query, AccountUpdate(verification=record)) != 1:
            wait = math.ceil(self.config.verification_wait_time / 1000)
            logger.warning(f"Concurrent verification request for {phone} lost the race")
            raise RateLimitError(f"Too often retries, try again in {wait} seconds.", wait=wait, unit="seconds")

        logger.info(f"Issued verification code for {phone} (attempt {record.retry_count})")
        self._dispatch(phone, record.code)

    def _dispatch(self, phone: str, code: str):
        try:
            result = self.sms.send_code(phone, code)
        except Exception as e:
            logger.error(f"SMS sender raised for {phone}: {e}")
            raise InternalError(f"Failed to send verification code: {e}") from e

        if not result or not result.get("success"):
            error = (result or {}).get("error", "unknown error")
            logger.error(f"SMS delivery failed for {phone}: {error}")
            raise InternalError(f"Failed to send verification code: {error}")
