"""
Phone account service.

The operations callers use: create accounts, request and check
verification codes, verify phones, log in and change passwords. Whatever
transport carries the request passes a CallContext for the connection.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..auth import AccountQuery, AccountUpdate, UserAccount
from ..auth.password import Password, digest_string
from ..errors import AuthError, AuthFailure, ConflictError, ValidationError
from .base import BaseService
from .session_service import CallContext

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    """A logged-in session."""
    account_id: str
    token: str
    password_changed: bool = False
    sessions_revoked: bool = True

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "token": self.token,
            "password_changed": self.password_changed,
            "sessions_revoked": self.sessions_revoked,
        }


class PhoneAccountService(BaseService):
    """
    Service for phone-number accounts.

    Handles:
    - Account creation (phone + optional password)
    - Verification codes by SMS (request, check, verify)
    - Login with password, session resume and logout
    - Password change for logged-in connections
    """

    # Accounts

    def create_account(self, phone: str, password: Optional[Password] = None) -> UserAccount:
        """
        Create an unverified account.

        Raises:
            ValidationError: If the phone is missing or unparsable, or the
                             password is malformed
            ConflictError: If the phone number is already registered
        """
        if not phone:
            raise ValidationError("Need to set phone")
        phone = self.context.normalizer(phone)

        if self.store.get_by_phone(phone) is not None:
            raise ConflictError("User with this phone number already exists")

        verifier = self.context.passwords.hash(password) if password else None
        return self.store.insert(self.store.new_account(phone, verifier))

    def find_account(self, phone: str) -> Optional[UserAccount]:
        """Look up an account by phone number."""
        return self.store.get_by_phone(self.context.normalizer(phone))

    def remove_account(self, phone: str) -> bool:
        """Permanently delete the account with this phone number."""
        removed = self.store.delete(AccountQuery(phone_number=self.context.normalizer(phone)))
        return removed > 0

    # Verification

    def request_verification(self, phone: str, context: Optional[CallContext] = None):
        """
        Send a verification code to a phone number.

        A logged-in caller verifies a number for its own account. Anonymous
        callers get the account owning the number, created on first request.

        Raises:
            ValidationError: If the phone is missing or unparsable
            RateLimitError: If a code was requested too recently
            InternalError: If the SMS could not be sent
        """
        if phone is not None and not isinstance(phone, str):
            raise ValidationError("Not a valid phone")
        if not phone:
            raise ValidationError("Not a valid phone")
        phone = self.context.normalizer(phone)

        account_id = self.context.sessions.current_account(context)
        if account_id is None:
            account_id = self._find_or_create(phone).account_id

        self.context.issuer.issue(account_id, phone)

    def _find_or_create(self, phone: str) -> UserAccount:
        account = self.store.get_by_phone(phone)
        if account is not None:
            return account
        try:
            return self.store.insert(self.store.new_account(phone))
        except ConflictError:
            # Created by a concurrent request for the same number
            account = self.store.get_by_phone(phone)
            if account is None:
                raise
            return account

    def verify_code(self, phone: str, code: str):
        """
        Check a code without consuming it.

        Raises:
            ValidationError, NotFoundError, AuthError
        """
        self.context.validator.check(phone, code)

    def verify_phone(
        self,
        phone: str,
        code: str,
        new_password: Optional[Password] = None,
        context: Optional[CallContext] = None
    ) -> LoginResult:
        """
        Mark the phone verified, optionally set a password, and log in.

        Args:
            phone: Phone number the code was sent to
            code: Code from the SMS
            new_password: Optional new password
            context: The calling connection (a fresh one if not given)

        Returns:
            LoginResult with a new session token for the connection

        Raises:
            ValidationError, NotFoundError, AuthError, InternalError
        """
        context = context or CallContext()
        result = self.context.validator.validate(phone, code, new_password, context)
        token = self.context.sessions.login(result.account_id, context)

        return LoginResult(
            account_id=result.account_id,
            token=token,
            password_changed=result.password_changed,
            sessions_revoked=result.sessions_revoked,
        )

    def is_phone_verified(self, context: Optional[CallContext]) -> bool:
        """Whether the logged-in account's phone is verified."""
        account_id = self.context.sessions.current_account(context)
        if account_id is None:
            return False
        account = self.store.get_by_id(account_id)
        return bool(account and account.phone.verified)

    # Sessions

    def login(self, selector, password: Password, context: Optional[CallContext] = None) -> LoginResult:
        """
        Login with phone (or account id) and password.

        Raises:
            ValidationError: If selector or password is malformed
            AuthError: If the account is unknown, has no password, or the
                       password is wrong
        """
        context = context or CallContext()
        account_id = self.context.authenticator.authenticate(selector, password)
        token = self.context.sessions.login(account_id, context)

        logger.info(f"User logged in: {account_id}")
        return LoginResult(account_id=account_id, token=token)

    def resume(self, token: str, context: CallContext) -> str:
        """Log a connection in with a previously issued session token."""
        return self.context.sessions.resume(token, context)

    def logout(self, context: CallContext):
        self.context.sessions.logout(context)

    def change_password(
        self,
        old_password: Password,
        new_password: Password,
        context: Optional[CallContext] = None
    ) -> dict:
        """
        Change the logged-in account's password.

        Every other session of the account is logged out; the connection
        performing the change keeps its token.

        Raises:
            AuthError: If not logged in (or the session was revoked), or the
                       old password is wrong
            ValidationError: If either password is malformed
        """
        account_id = self.context.sessions.require_login(context)

        digest_string(old_password)
        digest_string(new_password)

        account = self.store.get_by_id(account_id)
        if account is None:
            raise AuthError(AuthFailure.USER_NOT_FOUND)
        if not account.has_password():
            raise AuthError(AuthFailure.NO_PASSWORD)
        if not self.context.passwords.verify(old_password, account.verifier_hash):
            raise AuthError(AuthFailure.INCORRECT_PASSWORD)

        hashed = self.context.passwords.hash(new_password)
        current = self.context.sessions.capture_current_token(account.account_id, context.connection_id)

        affected = self.store.conditional_update(
            AccountQuery(account_id=account.account_id),
            AccountUpdate(verifier_hash=hashed, clear_verification=True)
        )
        if affected != 1:
            raise AuthError(AuthFailure.USER_NOT_FOUND)

        revoked = self.context.sessions.best_effort(
            lambda: self.context.sessions.invalidate_except(account.account_id, current),
            f"Revoking other sessions of {account.account_id}"
        )

        logger.info(f"Password changed for: {account.phone.number}")
        return {"password_changed": True, "sessions_revoked": revoked}
