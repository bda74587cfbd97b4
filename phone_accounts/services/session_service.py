"""
Session token coordination.

Keeps login tokens consistent with credential changes: a password change
revokes other sessions, a failed commit restores the caller's token, and the
acting connection is never logged out halfway through its own request.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from ..auth import AccountQuery, AccountStore, AccountUpdate, JWTHandler, SessionToken, hash_token
from ..errors import AuthError, AuthFailure, InternalError, PhoneAccountsError

logger = logging.getLogger(__name__)

# Attempts made for clean-up steps that run after a successful commit
BEST_EFFORT_ATTEMPTS = 2


@dataclass
class CallContext:
    """
    The caller's connection, as seen by the operations.

    account_id is set once the connection has logged in.
    """
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    account_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.account_id is not None


class SessionTokenCoordinator:
    """
    Issues, revokes and restores session tokens.

    Only token hashes are stored on the account. The coordinator also
    remembers which hashed token each connection is currently using.
    """

    def __init__(self, store: AccountStore, jwt_handler: JWTHandler):
        self.store = store
        self.jwt = jwt_handler
        self._connections: Dict[str, Tuple[str, str]] = {}  # connection -> (account, hashed token)
        self._lock = threading.Lock()

    # Connection bookkeeping

    def _bind(self, connection_id: str, account_id: str, hashed: Optional[str]):
        with self._lock:
            if hashed is None:
                self._connections.pop(connection_id, None)
            else:
                self._connections[connection_id] = (account_id, hashed)

    def _unbind_account(self, account_id: str, keep: Optional[str] = None):
        with self._lock:
            for connection_id, (owner, hashed) in list(self._connections.items()):
                if owner == account_id and hashed != keep:
                    del self._connections[connection_id]

    def _update(self, account_id: str, update: AccountUpdate) -> int:
        try:
            return self.store.conditional_update(AccountQuery(account_id=account_id), update)
        except InternalError:
            raise
        except Exception as e:
            raise InternalError(f"Session token store failure: {e}") from e

    # Login and logout

    def login(self, account_id: str, context: CallContext) -> str:
        """
        Issue a session token for the connection and mark it logged in.

        Returns:
            The raw token; only its hash is stored
        """
        token = self.jwt.create_session_token(account_id, context.connection_id)
        hashed = hash_token(token)
        affected = self._update(account_id, AccountUpdate(
            add_session_token=SessionToken(hashed_token=hashed, connection_id=context.connection_id)
        ))
        if affected != 1:
            raise InternalError(f"Account {account_id} vanished during login")
        self._bind(context.connection_id, account_id, hashed)
        context.account_id = account_id
        return token

    def resume(self, token: str, context: CallContext) -> str:
        """
        Log a connection back in with a previously issued token.

        Raises:
            AuthError: If the token is malformed, expired or revoked
        """
        payload = self.jwt.verify_token(token)
        if payload is None:
            raise AuthError(AuthFailure.INVALID_TOKEN)

        hashed = hash_token(token)
        account = self.store.find_one(AccountQuery(account_id=payload.user_id, session_token=hashed))
        if account is None:
            raise AuthError(AuthFailure.INVALID_TOKEN)

        self._bind(context.connection_id, account.account_id, hashed)
        context.account_id = account.account_id
        return account.account_id

    def logout(self, context: CallContext):
        """Revoke the connection's token and forget the login."""
        if context.account_id is None:
            return
        hashed = self.capture_current_token(context.account_id, context.connection_id)
        if hashed is not None:
            self._update(context.account_id, AccountUpdate(remove_session_token=hashed))
        self._bind(context.connection_id, context.account_id, None)
        context.account_id = None

    def current_account(self, context: Optional[CallContext]) -> Optional[str]:
        """
        Account the connection is logged in to, or None.

        A connection whose token has been revoked (by a password change on
        another connection, for instance) is logged out here.
        """
        if context is None or context.account_id is None:
            return None

        account_id = context.account_id
        hashed = self.capture_current_token(account_id, context.connection_id)
        if hashed is not None and self.store.find_one(
            AccountQuery(account_id=account_id, session_token=hashed)
        ) is not None:
            return account_id

        logger.info(f"Connection {context.connection_id} lost its session for account {account_id}")
        self._bind(context.connection_id, account_id, None)
        context.account_id = None
        return None

    def require_login(self, context: Optional[CallContext]) -> str:
        """
        Account id of a logged-in connection.

        Raises:
            AuthError: NOT_LOGGED_IN if the connection never logged in or its
                       token is no longer valid
        """
        account_id = self.current_account(context)
        if account_id is None:
            raise AuthError(AuthFailure.NOT_LOGGED_IN)
        return account_id

    def is_token_valid(self, account_id: str, token: str) -> bool:
        payload = self.jwt.verify_token(token)
        if payload is None or payload.user_id != account_id:
            return False
        account = self.store.find_one(AccountQuery(account_id=account_id, session_token=hash_token(token)))
        return account is not None

    # Credential change coordination

    def capture_current_token(self, account_id: str, connection_id: str) -> Optional[str]:
        """Return the hashed token the connection uses for this account, if any."""
        with self._lock:
            bound = self._connections.get(connection_id)
        if bound is None or bound[0] != account_id:
            return None
        return bound[1]

    def release(self, account_id: str, connection_id: str) -> Optional[str]:
        """
        Invalidate the connection's token ahead of a credential commit.

        Returns:
            The released hashed token, to hand back to restore() on failure
        """
        hashed = self.capture_current_token(account_id, connection_id)
        if hashed is None:
            return None
        self._update(account_id, AccountUpdate(remove_session_token=hashed))
        self._bind(connection_id, account_id, None)
        return hashed

    def restore(self, account_id: str, connection_id: str, token: Optional[str]):
        """Reinstate a released token after the triggering update failed."""
        if token is None:
            return
        self._update(account_id, AccountUpdate(
            add_session_token=SessionToken(hashed_token=token, connection_id=connection_id)
        ))
        self._bind(connection_id, account_id, token)
        logger.info(f"Restored session token for account {account_id} after failed update")

    def invalidate_except(self, account_id: str, keep_token: Optional[str]) -> int:
        """Remove every session token of the account except keep_token."""
        affected = self._update(account_id, AccountUpdate(remove_tokens_except=keep_token))
        self._unbind_account(account_id, keep=keep_token)
        return affected

    def invalidate_all(self, account_id: str) -> int:
        """Remove every session token of the account."""
        affected = self._update(account_id, AccountUpdate(remove_tokens_except=None))
        self._unbind_account(account_id)
        return affected

    def best_effort(self, action: Callable[[], object], description: str) -> bool:
        """
        Run a clean-up step that follows an already committed change.

        The step is retried once; a persistent failure is logged and reported
        as False so the caller can surface it without undoing the commit.
        """
        for attempt in range(1, BEST_EFFORT_ATTEMPTS + 1):
            try:
                action()
                return True
            except PhoneAccountsError as e:
                logger.warning(f"{description} failed (attempt {attempt}/{BEST_EFFORT_ATTEMPTS}): {e}")
        logger.error(f"{description} gave up after {BEST_EFFORT_ATTEMPTS} attempts")
        return False
