"""
Account storage and management.

Accounts are stored in a JSON file for simplicity. Callers only talk to the
AccountStore interface, whose conditional_update is the single atomic
read-match-write primitive every race-sensitive operation relies on.
"""

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from ..errors import ConflictError, InternalError

logger = logging.getLogger(__name__)

# Default storage path
DEFAULT_USERS_FILE = Path("data") / "accounts.json"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class PhoneInfo:
    """Account phone number and its verification state."""
    number: str
    verified: bool = False


@dataclass
class PendingVerification:
    """Outstanding verification code and its rate limit counters."""
    code: str
    target_phone: str
    retry_count: int
    last_issued_at: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_issued_at"] = self.last_issued_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PendingVerification":
        return cls(
            code=data["code"],
            target_phone=data["target_phone"],
            retry_count=data.get("retry_count", 0),
            last_issued_at=_parse_time(data["last_issued_at"]),
        )


@dataclass
class SessionToken:
    """Hashed login token bound to the connection that created it."""
    hashed_token: str
    connection_id: str
    created_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SessionToken":
        return cls(**data)


@dataclass
class UserAccount:
    """Account data model."""
    account_id: str
    phone: PhoneInfo
    verifier_hash: Optional[str] = None  # None until a password is set
    verification: Optional[PendingVerification] = None
    session_tokens: List[SessionToken] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: utcnow().isoformat())
    updated_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "phone": asdict(self.phone),
            "verifier_hash": self.verifier_hash,
            "verification": self.verification.to_dict() if self.verification else None,
            "session_tokens": [t.to_dict() for t in self.session_tokens],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserAccount":
        verification = data.get("verification")
        return cls(
            account_id=data["account_id"],
            phone=PhoneInfo(**data["phone"]),
            verifier_hash=data.get("verifier_hash"),
            verification=PendingVerification.from_dict(verification) if verification else None,
            session_tokens=[SessionToken.from_dict(t) for t in data.get("session_tokens", [])],
            created_at=data.get("created_at", utcnow().isoformat()),
            updated_at=data.get("updated_at", utcnow().isoformat()),
        )

    def has_password(self) -> bool:
        """Check if account has a password set."""
        return self.verifier_hash is not None

    def has_session_token(self, hashed_token: str) -> bool:
        return any(t.hashed_token == hashed_token for t in self.session_tokens)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Marks a query clause that should not be evaluated
UNSET: Any = _Unset()


@dataclass(frozen=True)
class AccountQuery:
    """
    Match clauses for find/update. Every clause that is set must hold.

    verification_last_issued_at matches the exact timestamp of the pending
    verification, or the absence of any pending verification when None.
    """
    account_id: Optional[str] = None
    phone_number: Optional[str] = None
    verification_code: Optional[str] = None
    verification_last_issued_at: Any = UNSET
    session_token: Optional[str] = None
    verifier_hash: Optional[str] = None

    def matches(self, account: UserAccount) -> bool:
        if self.account_id is not None and account.account_id != self.account_id:
            return False
        if self.phone_number is not None and account.phone.number != self.phone_number:
            return False
        if self.verification_code is not None:
            if not account.verification or account.verification.code != self.verification_code:
                return False
        if self.verification_last_issued_at is not UNSET:
            current = account.verification.last_issued_at if account.verification else None
            if current != self.verification_last_issued_at:
                return False
        if self.session_token is not None and not account.has_session_token(self.session_token):
            return False
        if self.verifier_hash is not None and account.verifier_hash != self.verifier_hash:
            return False
        return True


@dataclass
class AccountUpdate:
    """Changes applied to every account matched by a conditional update."""
    phone_verified: Optional[bool] = None
    verifier_hash: Optional[str] = None
    verification: Optional[PendingVerification] = None
    clear_verification: bool = False
    add_session_token: Optional[SessionToken] = None
    remove_session_token: Optional[str] = None
    # Drop every token except this hashed one (None drops them all)
    remove_tokens_except: Any = UNSET

    def apply(self, account: UserAccount) -> None:
        if self.phone_verified is not None:
            account.phone.verified = self.phone_verified
        if self.verifier_hash is not None:
            account.verifier_hash = self.verifier_hash
        if self.clear_verification:
            account.verification = None
        if self.verification is not None:
            account.verification = self.verification
        if self.remove_session_token is not None:
            account.session_tokens = [
                t for t in account.session_tokens if t.hashed_token != self.remove_session_token
            ]
        if self.remove_tokens_except is not UNSET:
            account.session_tokens = [
                t for t in account.session_tokens
                if self.remove_tokens_except is not None and t.hashed_token == self.remove_tokens_except
            ]
        if self.add_session_token is not None and not account.has_session_token(self.add_session_token.hashed_token):
            account.session_tokens.append(self.add_session_token)
        account.updated_at = utcnow().isoformat()


class AccountStore(ABC):
    """
    Persistence interface for accounts.

    Implementations must make conditional_update atomic: the match and the
    write happen as one step, so of two concurrent updates with the same
    predicate only one can succeed. Phone numbers are unique.
    """

    @abstractmethod
    def find_one(self, query: AccountQuery) -> Optional[UserAccount]:
        """Return the first account matching the query."""

    @abstractmethod
    def insert(self, account: UserAccount) -> UserAccount:
        """
        Insert a new account.

        Raises:
            ConflictError: If the phone number is already taken
        """

    @abstractmethod
    def conditional_update(self, query: AccountQuery, update: AccountUpdate) -> int:
        """Apply the update to the matching account. Returns affected count."""

    @abstractmethod
    def delete(self, query: AccountQuery) -> int:
        """Remove matching accounts. Returns removed count."""

    def get_by_id(self, account_id: str) -> Optional[UserAccount]:
        return self.find_one(AccountQuery(account_id=account_id))

    def get_by_phone(self, phone: str) -> Optional[UserAccount]:
        return self.find_one(AccountQuery(phone_number=phone))

    @staticmethod
    def new_account(phone: str, verifier_hash: Optional[str] = None) -> UserAccount:
        return UserAccount(
            account_id=str(uuid.uuid4()),
            phone=PhoneInfo(number=phone, verified=False),
            verifier_hash=verifier_hash,
        )


class JsonAccountStore(AccountStore):
    """
    JSON file account storage.

    Thread-safe: every operation loads, matches and saves under one lock,
    which makes conditional_update atomic within the process.
    """

    def __init__(self, file_path: Optional[Path] = None):
        """
        Initialize account store.

        Args:
            file_path: Path to accounts JSON file (default: data/accounts.json)
        """
        self.file_path = Path(file_path or DEFAULT_USERS_FILE)
        self._lock = threading.Lock()
        self._ensure_file()

    def _ensure_file(self):
        """Ensure the storage file and directory exist."""
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            if not self.file_path.exists():
                self._save_all({})
        except OSError as e:
            raise InternalError(f"Cannot initialize account storage: {e}") from e

    def _load_all(self) -> dict[str, dict]:
        """Load all accounts keyed by account id."""
        try:
            with open(self.file_path, "r") as f:
                return json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read account storage {self.file_path}: {e}")
            raise InternalError("Account storage is unavailable") from e

    def _save_all(self, accounts: dict[str, dict]):
        """Save all accounts to file."""
        try:
            with open(self.file_path, "w") as f:
                json.dump(accounts, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Failed to write account storage {self.file_path}: {e}")
            raise InternalError("Account storage is unavailable") from e

    def find_one(self, query: AccountQuery) -> Optional[UserAccount]:
        with self._lock:
            for data in self._load_all().values():
                account = UserAccount.from_dict(data)
                if query.matches(account):
                    return account
        return None

    def insert(self, account: UserAccount) -> UserAccount:
        with self._lock:
            accounts = self._load_all()
            for data in accounts.values():
                if data["phone"]["number"] == account.phone.number:
                    raise ConflictError("Phone number already exists, failed on creation.")
            if account.account_id in accounts:
                raise ConflictError(f"Account {account.account_id} already exists")

            accounts[account.account_id] = account.to_dict()
            self._save_all(accounts)

        logger.info(f"Created account {account.account_id} for {account.phone.number}")
        return account

    def conditional_update(self, query: AccountQuery, update: AccountUpdate) -> int:
        with self._lock:
            accounts = self._load_all()
            for account_id, data in accounts.items():
                account = UserAccount.from_dict(data)
                if query.matches(account):
                    update.apply(account)
                    accounts[account_id] = account.to_dict()
                    self._save_all(accounts)
                    logger.debug(f"Updated account: {account_id}")
                    return 1
        return 0

    def delete(self, query: AccountQuery) -> int:
        with self._lock:
            accounts = self._load_all()
            doomed = [
                account_id for account_id, data in accounts.items()
                if query.matches(UserAccount.from_dict(data))
            ]
            for account_id in doomed:
                del accounts[account_id]
            if doomed:
                self._save_all(accounts)

        if doomed:
            logger.info(f"Deleted {len(doomed)} account(s)")
        return len(doomed)
