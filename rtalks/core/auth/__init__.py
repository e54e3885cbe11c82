"""
Admin authentication for RTalks.
"""

from rtalks.core.auth.service import (
    AdminAuthService,
    AdminIdentity,
    AuthGate,
    hash_password,
    verify_password,
)
from rtalks.core.auth.tokens import AdminSession, TokenService

__all__ = [
    'AdminAuthService',
    'AdminIdentity',
    'AdminSession',
    'AuthGate',
    'TokenService',
    'hash_password',
    'verify_password',
]
