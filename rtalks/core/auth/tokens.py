"""Signed admin session tokens (JWT, HMAC-SHA256)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import jwt

from rtalks.core.errors import AuthError

ALGORITHM = "HS256"


@dataclass(frozen=True)
class AdminSession:
    """Claims carried by a verified token."""
    admin_id: int
    issued_at: datetime
    expires_at: datetime
    key_id: str
    email: str | None = None
    username: str | None = None


class TokenService:
    """
    Issues and verifies admin tokens.

    The algorithm is fixed; tokens presenting any other ``alg`` or a
    different ``kid`` are rejected.
    """

    def __init__(
        self,
        secret: str,
        key_id: str = "primary",
        expiry: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self.key_id = key_id
        self.expiry = expiry
        self._clock = clock

    def issue(self, admin: dict[str, Any]) -> str:
        """Sign a token for an admin record (needs id, email, username)."""
        now = self._clock()
        payload = {
            "sub": str(admin["id"]),
            "email": admin.get("email"),
            "username": admin.get("username"),
            "iat": int(now.timestamp()),
            "exp": int((now + self.expiry).timestamp()),
        }
        return jwt.encode(
            payload,
            self._secret,
            algorithm=ALGORITHM,
            headers={"kid": self.key_id},
        )

    def decode(self, token: str) -> AdminSession:
        """
        Verify signature, expiry and key id.

        Raises:
            AuthError: For any invalid, expired or foreign token
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise AuthError(f"malformed token: {e}") from e

        if header.get("kid") != self.key_id:
            raise AuthError("unknown signing key")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthError("token expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthError(f"invalid token: {e}") from e

        try:
            admin_id = int(claims["sub"])
        except (TypeError, ValueError) as e:
            raise AuthError("invalid subject") from e

        return AdminSession(
            admin_id=admin_id,
            issued_at=datetime.fromtimestamp(claims["iat"], timezone.utc),
            expires_at=datetime.fromtimestamp(claims["exp"], timezone.utc),
            key_id=header["kid"],
            email=claims.get("email"),
            username=claims.get("username"),
        )
