"""
Password login.

Resolves a login selector (account id or phone number) to an account and
checks the presented password against its stored verifier.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from ..auth import AccountQuery, AccountStore, AccountUpdate, PasswordHandler, PhoneNormalizer, UserAccount
from ..auth.password import Password, digest_string
from ..errors import AuthError, AuthFailure, InternalError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginSelector:
    """Identifies the account to log in: exactly one of id or phone."""
    id: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def parse(cls, selector: Union[str, dict, "LoginSelector"]) -> "LoginSelector":
        """
        Build a selector from a phone string, a {"id"} / {"phone"} dict or a
        LoginSelector.

        Raises:
            ValidationError: Unless exactly one non-empty field is given
        """
        if isinstance(selector, str):
            selector = cls(phone=selector)
        elif isinstance(selector, dict):
            unknown = set(selector) - {"id", "phone"}
            if unknown:
                raise ValidationError(f"Unknown selector fields: {sorted(unknown)}")
            if len(selector) != 1:
                raise ValidationError("User property must have exactly one field")
            selector = cls(id=selector.get("id"), phone=selector.get("phone"))
        elif not isinstance(selector, cls):
            raise ValidationError("Selector must be a phone string or an object with id or phone")

        values = [v for v in (selector.id, selector.phone) if v is not None]
        if len(values) != 1:
            raise ValidationError("User property must have exactly one field")
        if not isinstance(values[0], str) or not values[0]:
            raise ValidationError("Selector value must be a non-empty string")
        return selector


class AuthenticationHandler:
    """Accepts or rejects password logins."""

    def __init__(self, store: AccountStore, password_handler: PasswordHandler, normalizer: PhoneNormalizer):
        self.store = store
        self.passwords = password_handler
        self.normalize = normalizer

    def _query(self, selector: LoginSelector) -> AccountQuery:
        if selector.id is not None:
            return AccountQuery(account_id=selector.id)
        return AccountQuery(phone_number=self.normalize(selector.phone))

    def authenticate(self, selector: Union[str, dict, LoginSelector], password: Password) -> str:
        """
        Check a login attempt.

        Args:
            selector: Phone string, {"id": ...} / {"phone": ...}, or LoginSelector
            password: Plain text password or transport digest

        Returns:
            The authenticated account id

        Raises:
            ValidationError: If the selector or password is malformed
            AuthError: USER_NOT_FOUND, NO_PASSWORD or INCORRECT_PASSWORD
        """
        selector = LoginSelector.parse(selector)
        digest_string(password)

        account = self.store.find_one(self._query(selector))
        if account is None:
            logger.warning(f"Login for unknown account: {selector.id or selector.phone}")
            raise AuthError(AuthFailure.USER_NOT_FOUND)

        if not account.has_password():
            raise AuthError(AuthFailure.NO_PASSWORD)

        if not self.passwords.verify(password, account.verifier_hash):
            logger.warning(f"Incorrect password for account {account.account_id}")
            raise AuthError(AuthFailure.INCORRECT_PASSWORD)

        if self.passwords.needs_rehash(account.verifier_hash):
            self._rehash(account, password)

        return account.account_id

    def _rehash(self, account: UserAccount, password: Password):
        """Re-derive a verifier made with an outdated work factor."""
        # Only replace the verifier that was just checked
        query = AccountQuery(account_id=account.account_id, verifier_hash=account.verifier_hash)
        update = AccountUpdate(verifier_hash=self.passwords.hash(password))
        try:
            if self.store.conditional_update(query, update) == 1:
                logger.info(f"Rehashed password of account {account.account_id} with cost {self.passwords.rounds}")
        except InternalError as e:
            logger.warning(f"Could not rehash password of account {account.account_id}: {e}")
