"""
FastAPI dependencies for authentication, rate limiting and shared components.

Components are built once by the app factory and live on ``app.state``.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import Header, Request

from rtalks.config.settings import AppSettings
from rtalks.core.api.rate_limiter import RateLimiter
from rtalks.core.auth.service import AdminAuthService, AdminIdentity, AuthGate
from rtalks.core.monitoring import MetricsCollector
from rtalks.core.storage.file.local_backend import StorageResolver
from rtalks.core.storage.file.pipeline import UploadPipeline
from rtalks.core.storage.sql_storage import SQLStore


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_store(request: Request) -> SQLStore:
    return request.app.state.store


def get_metrics(request: Request) -> MetricsCollector:
    return request.app.state.metrics


def get_resolver(request: Request) -> StorageResolver:
    return request.app.state.resolver


def get_pipeline(request: Request) -> UploadPipeline:
    return request.app.state.pipeline


def get_auth_service(request: Request) -> AdminAuthService:
    return request.app.state.auth_service


def client_key(request: Request) -> str:
    """
    Identify the client for rate limiting.

    The peer address, or the first X-Forwarded-For hop when the deployment
    sits behind a trusted reverse proxy.
    """
    settings: AppSettings = request.app.state.settings
    if settings.security.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",", 1)[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(route_class: str) -> Callable[[Request], None]:
    """
    Build a dependency that applies the limit of ``route_class``.

    Raises:
        RateLimitError: If the client exhausted its window
    """
    def dependency(request: Request) -> None:
        limiter: RateLimiter = request.app.state.rate_limiter
        decision = limiter.enforce(client_key(request), route_class)
        request.state.rate_limit_remaining = decision.remaining

    dependency.__name__ = f"rate_limit_{route_class}"
    return dependency


def require_admin(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> AdminIdentity:
    """
    Authenticate the bearer token of an admin request.

    Raises:
        AuthError: If the token is missing, invalid, expired or orphaned
    """
    gate: AuthGate = request.app.state.auth_gate
    identity = gate.authenticate(authorization)
    request.state.admin = identity
    return identity


def request_base_url(request: Request) -> str:
    """Scheme and host the client used, without a trailing slash."""
    return str(request.base_url).rstrip("/")
