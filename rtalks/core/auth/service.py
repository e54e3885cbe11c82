"""
Admin authentication for RTalks.

This module provides:
- Password hashing and verification (bcrypt)
- AuthGate: bearer token verification for every admin request
- AdminAuthService: credential login that issues tokens

Design notes:
- A token is not a cached trust decision. AuthGate reloads the admin on
  every request, so deleting an admin revokes all of their tokens at once.
- Every failure surfaces as the same AuthError; the reason is only logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import bcrypt

from rtalks.core.auth.tokens import TokenService
from rtalks.core.errors import AuthError, ValidationError
from rtalks.core.storage.sql_storage import SQLStore
from rtalks.logging.setup import get_logger

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "
CREDENTIAL_FIELDS = ("password_hash",)


def hash_password(password: str) -> str:
    """Hash a password with a fresh bcrypt salt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check of a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(
            password.encode("utf-8"), password_hash.encode("ascii"))
    except ValueError:
        # Malformed hash in the store
        return False


@dataclass(frozen=True)
class AdminIdentity:
    """An authenticated admin with credentials stripped."""
    id: int
    email: str
    username: str
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> 'AdminIdentity':
        public = {k: v for k, v in record.items() if k not in CREDENTIAL_FIELDS}
        return cls(
            id=public["id"],
            email=public["email"],
            username=public["username"],
            created_at=public.get("created_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AuthGate:
    """
    Verifies bearer tokens and resolves the admin they belong to.

    Usage:
        gate = AuthGate(token_service, store)
        identity = gate.authenticate(request.headers.get("Authorization"))
    """

    def __init__(self, tokens: TokenService, store: SQLStore):
        self.tokens = tokens
        self.store = store

    def authenticate(self, authorization: str | None) -> AdminIdentity:
        """
        Authenticate an ``Authorization: Bearer <token>`` header value.

        Raises:
            AuthError: Missing or malformed header, bad signature, expired
                token, unknown key id, or admin no longer in the store
        """
        try:
            token = self._extract_token(authorization)
            session = self.tokens.decode(token)
            record = self.store.get_admin(session.admin_id)
            if record is None:
                raise AuthError(f"admin {session.admin_id} not found")
        except AuthError as e:
            logger.info(f"Authentication rejected: {e.reason}")
            raise

        return AdminIdentity.from_record(record)

    @staticmethod
    def _extract_token(authorization: str | None) -> str:
        if not authorization:
            raise AuthError("missing authorization header")
        if not authorization.startswith(BEARER_PREFIX):
            raise AuthError("authorization header is not a bearer token")
        token = authorization[len(BEARER_PREFIX):].strip()
        if not token:
            raise AuthError("empty bearer token")
        return token


class InvalidCredentialsError(AuthError):
    """Login failed; uses its own public message."""
    public_message = "Invalid credentials"


class AdminAuthService:
    """Credential login for admins."""

    def __init__(self, tokens: TokenService, store: SQLStore):
        self.tokens = tokens
        self.store = store

    def login(
        self,
        password: str | None,
        email: str | None = None,
        username: str | None = None,
    ) -> tuple[str, AdminIdentity]:
        """
        Check credentials and issue a token.

        Returns:
            Tuple of (token, identity)

        Raises:
            ValidationError: If identifier or password is missing
            InvalidCredentialsError: If the admin is unknown or the password is wrong
        """
        if not (email or username) or not password:
            raise ValidationError("Email/username and password are required")

        record = self.store.get_admin_by_login(email=email, username=username)
        if record is None:
            raise InvalidCredentialsError("unknown admin")

        if not verify_password(password, record["password_hash"]):
            raise InvalidCredentialsError(f"wrong password for admin {record['id']}")

        identity = AdminIdentity.from_record(record)
        token = self.tokens.issue(identity.to_dict())
        logger.info(f"Admin logged in: id={identity.id}")
        return token, identity

    def register(self, email: str, username: str, password: str) -> AdminIdentity:
        """Create an admin account (used by the CLI)."""
        if len(password) < 8:
            raise ValidationError("Password must be at least 8 characters")
        record = self.store.create_admin(
            email=email, username=username, password_hash=hash_password(password))
        return AdminIdentity.from_record(record)
