"""
Authentication module. Player identity and API key management.

A player registers a username and receives an API key once. The
username is the player's principal everywhere else: host account id,
bet owner, oracle grantee, liquidity depositor.

Only the sha256 hash of the API key is stored; the raw key is returned once.
"""

import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class User:
    username: str
    api_key_hash: str
    created_at: str = field(default_factory=_now)
    last_seen_at: str = field(default_factory=_now)


def _hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


class AuthStore:
    """In-memory auth store. Serialized via persistence module."""

    def __init__(self):
        self.users: dict[str, User] = {}         # username -> User
        self.key_to_user: dict[str, User] = {}   # api_key_hash -> User

    def register_user(self, username: str) -> tuple[User, str]:
        """Register a player. Returns (user, raw_api_key)."""
        if username in self.users:
            raise ValueError("username_taken")
        raw_key = secrets.token_urlsafe(32)
        key_hash = _hash_key(raw_key)
        user = User(username=username, api_key_hash=key_hash)
        self.users[username] = user
        self.key_to_user[key_hash] = user
        return user, raw_key

    def rotate_key(self, username: str) -> str:
        """Issue a new API key; the old one stops working."""
        user = self.users[username]
        self.key_to_user.pop(user.api_key_hash, None)
        raw_key = secrets.token_urlsafe(32)
        user.api_key_hash = _hash_key(raw_key)
        user.last_seen_at = _now()
        self.key_to_user[user.api_key_hash] = user
        return raw_key

    def authenticate(self, raw_key: str) -> User | None:
        """Validate an API key. Returns User or None."""
        key_hash = _hash_key(raw_key)
        user = self.key_to_user.get(key_hash)
        if user:
            user.last_seen_at = _now()
        return user
