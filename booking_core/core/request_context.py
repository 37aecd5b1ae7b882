"""
Request Context Resolution Module

This module provides the SINGLE SOURCE OF TRUTH for actor resolution.
All booking routes use it to learn who is calling and in which role.

ARCHITECTURE:
    1. resolve_request_context() extracts the bearer token from the request
    2. It verifies the JWT with the shared signing secret
    3. Returns a standardized RequestContext object
    4. Authorization decisions consume the context's user_id and role

AUTH METHOD:
    - JWT Bearer token; claims: ``sub`` (actor id) and ``role``
    - NO fallback to headers or dev-users
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import jwt
from fastapi import Request

from .config import get_settings
from .responses import ErrorCodes

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({"admin", "admin1", "admin2", "superadmin"})
MERCHANT_ROLES = frozenset({"merchant", "admin", "superadmin"})
DEFAULT_ROLE = "customer"


@dataclass(frozen=True)
class RequestContext:
    """
    Resolved actor for a request.

    The core only asks three questions of it: is this the booking's customer,
    is it the booking's vendor, or does it hold an administrative role.
    """
    user_id: str
    role: str = DEFAULT_ROLE
    auth_method: str = "jwt"
    is_authenticated: bool = True

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    def __init__(self, message: str, status_code: int = 401, code: str = ErrorCodes.AUTHENTICATION_REQUIRED):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)


def decode_token(token: str) -> dict:
    """
    Verify a bearer token and return its claims.

    Raises:
        AuthenticationError: signature, expiry or shape is invalid
    """
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired. Please sign in again.", code=ErrorCodes.INVALID_TOKEN)
    except jwt.InvalidTokenError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise AuthenticationError("Invalid or expired token. Please sign in again.", code=ErrorCodes.INVALID_TOKEN)

    if not claims.get("sub"):
        raise AuthenticationError("Token is missing the subject claim.", code=ErrorCodes.INVALID_TOKEN)
    return claims


def resolve_request_context(
    request: Request,
    require_auth: bool = True,
) -> RequestContext:
    """
    Resolve the actor from a request.

    Args:
        request: The FastAPI request object
        require_auth: If True, raises AuthenticationError when no identity found

    Returns:
        RequestContext with resolved identity; an anonymous context when
        require_auth is False and no token was sent
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        if require_auth:
            logger.warning("Authentication failed: No bearer token found")
            raise AuthenticationError("Authentication required. Please sign in.")
        return RequestContext(user_id="", role="", auth_method="none", is_authenticated=False)

    claims = decode_token(auth_header[7:].strip())
    ctx = RequestContext(
        user_id=str(claims["sub"]),
        role=str(claims.get("role") or DEFAULT_ROLE).lower(),
        auth_method="jwt",
        is_authenticated=True,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    logger.debug(f"Auth via JWT: {ctx.user_id} ({ctx.role})")
    return ctx


def require_roles(ctx: RequestContext, allowed_roles: Iterable[str]) -> str:
    """
    Check that the actor holds one of the allowed roles.

    Returns:
        The actor's role

    Raises:
        Forbidden: If the role is not allowed
    """
    from ..errors import Forbidden

    allowed = set(allowed_roles)
    if ctx.role not in allowed:
        logger.warning(
            f"Authorization failed: User {ctx.user_id} has role {ctx.role}, "
            f"needs one of {sorted(allowed)}"
        )
        raise Forbidden(f"User role '{ctx.role}' is not authorized to access this route")
    return ctx.role


async def get_request_context(request: Request) -> RequestContext:
    """
    FastAPI dependency for getting the authenticated actor.

        @router.get("/bookings/mine")
        async def handler(ctx: RequestContext = Depends(get_request_context)):
            ...
    """
    return resolve_request_context(request, require_auth=True)
