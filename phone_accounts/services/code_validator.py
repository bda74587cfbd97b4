"""
Verification code validation.

A code is consumed by a single conditional update that matches on the code
itself, so of two concurrent attempts with the same code only one wins.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from ..auth import AccountQuery, AccountStore, AccountUpdate, PasswordHandler, PhoneNormalizer, UserAccount
from ..auth.password import Password
from ..config import AccountsConfig
from ..errors import AuthError, AuthFailure, NotFoundError, ValidationError
from .session_service import CallContext, SessionTokenCoordinator

logger = logging.getLogger(__name__)


def _codes_equal(presented: str, expected: Optional[str]) -> bool:
    if not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


@dataclass
class VerificationResult:
    """Outcome of a successful phone verification."""
    account_id: str
    password_changed: bool = False
    sessions_revoked: bool = True

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "password_changed": self.password_changed,
            "sessions_revoked": self.sessions_revoked,
        }


class VerificationValidator:
    """Checks and consumes verification codes, optionally setting a password."""

    def __init__(
        self,
        store: AccountStore,
        password_handler: PasswordHandler,
        sessions: SessionTokenCoordinator,
        normalizer: PhoneNormalizer,
        config: AccountsConfig
    ):
        self.store = store
        self.passwords = password_handler
        self.sessions = sessions
        self.normalize = normalizer
        self.config = config

    def is_master_code(self, code: str) -> bool:
        """Check whether code is the configured administrative override."""
        return bool(code) and _codes_equal(code, self.config.master_verification_code)

    def _find_challenged_account(self, phone: str, code: str) -> tuple[str, UserAccount]:
        if not isinstance(phone, str) or not isinstance(code, str):
            raise ValidationError("Phone and code must be strings")
        if not code:
            raise ValidationError("Code must be provided")

        phone = self.normalize(phone)

        account = self.store.get_by_phone(phone)
        if account is None:
            raise NotFoundError("Not a valid phone")

        pending = account.verification
        if pending is None or not (_codes_equal(code, pending.code) or self.is_master_code(code)):
            logger.warning(f"Rejected verification code for {phone}")
            raise AuthError(AuthFailure.INVALID_CODE)

        return phone, account

    def check(self, phone: str, code: str) -> str:
        """
        Check a code without consuming it.

        Returns:
            The account id the code belongs to

        Raises:
            ValidationError: If phone or code is missing or malformed
            NotFoundError: If no account has this phone
            AuthError: If the code is wrong or no code is outstanding
        """
        _, account = self._find_challenged_account(phone, code)
        return account.account_id

    def validate(
        self,
        phone: str,
        code: str,
        new_password: Optional[Password] = None,
        context: Optional[CallContext] = None
    ) -> VerificationResult:
        """
        Consume a code, mark the phone verified and optionally set a password.

        Args:
            phone: Phone number the code was sent to
            code: Code from the SMS, or the master override code
            new_password: Optional new password (plain or transport digest)
            context: The acting connection, whose token is protected while
                     the password changes

        Raises:
            ValidationError: If input is malformed
            NotFoundError: If no account has this phone
            AuthError: If the code is wrong, or another request consumed it first
        """
        phone, account = self._find_challenged_account(phone, code)
        master = self.is_master_code(code)

        update = AccountUpdate(phone_verified=True, clear_verification=True)
        released = None
        if new_password:
            update.verifier_hash = self.passwords.hash(new_password)
            if context is not None:
                # The commit revokes every token; take the caller's out first
                # so a failed commit can hand it back.
                released = self.sessions.release(account.account_id, context.connection_id)

        query = AccountQuery(
            account_id=account.account_id,
            phone_number=phone,
            verification_code=None if master else code,
        )

        try:
            affected = self.store.conditional_update(query, update)
        except Exception:
            self._rollback(account.account_id, context, released)
            raise

        if affected != 1:
            self._rollback(account.account_id, context, released)
            logger.warning(f"Verification code for {phone} was consumed concurrently")
            raise AuthError(AuthFailure.INVALID_PHONE)

        result = VerificationResult(account_id=account.account_id)
        if new_password:
            result.password_changed = True
            result.sessions_revoked = self.sessions.best_effort(
                lambda: self.sessions.invalidate_all(account.account_id),
                f"Revoking sessions of {account.account_id} after password change"
            )

        logger.info(f"Phone verified: {phone}{' (master code)' if master else ''}")
        return result

    def _rollback(self, account_id: str, context: Optional[CallContext], released: Optional[str]):
        if context is None or released is None:
            return
        self.sessions.best_effort(
            lambda: self.sessions.restore(account_id, context.connection_id, released),
            f"Restoring session token of {account_id}"
        )
