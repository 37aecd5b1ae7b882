"""
Core module - configuration, database, request context, and response formatting.
"""
from .config import Settings, get_settings
from .db import get_session, Base, engine, AsyncSessionLocal
from .request_context import (
    RequestContext,
    resolve_request_context,
    require_roles,
    get_request_context,
    AuthenticationError,
    ADMIN_ROLES,
    MERCHANT_ROLES,
)
from .responses import (
    ErrorCodes,
    success_response,
    error_response,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "get_session",
    "Base",
    "engine",
    "AsyncSessionLocal",
    # Request Context
    "RequestContext",
    "resolve_request_context",
    "require_roles",
    "get_request_context",
    "AuthenticationError",
    "ADMIN_ROLES",
    "MERCHANT_ROLES",
    # Responses
    "ErrorCodes",
    "success_response",
    "error_response",
]
