"""
Multi-tenancy context module.

Every booking, service and staff member belongs to exactly one tenant. The
tenant for a request is resolved once, at the edge, and passed explicitly to
every query; nothing below the routes reads headers.

RESOLUTION ORDER:
    1. X-Tenant-ID header (explicit override)
    2. Request host mapped through TENANT_DOMAINS
    3. DEFAULT_TENANT
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import Request

from ..core.config import get_settings


logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"
_TENANT_ID_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]{0,63}")


class TenantResolutionSource(str, Enum):
    """How the tenant context was determined."""

    HEADER = "header"               # From X-Tenant-ID
    DOMAIN = "domain"               # From the request host via TENANT_DOMAINS
    DEFAULT_FALLBACK = "default"    # Nothing matched


@dataclass(frozen=True)
class TenantContext:
    """
    Immutable context representing the current tenant for a request.

    Attributes:
        tenant_id: Partition key stored on every tenant-owned row
        timezone: IANA timezone used for "today" and "now" comparisons
        source: How this context was determined (for audit logging)
    """

    tenant_id: str
    timezone: str = "Europe/London"
    source: TenantResolutionSource = TenantResolutionSource.DEFAULT_FALLBACK

    def __post_init__(self):
        if not self.tenant_id:
            raise ValueError("tenant_id must be non-empty")

    @property
    def tzinfo(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {self.timezone!r} for tenant {self.tenant_id}; using UTC")
            return ZoneInfo("UTC")

    def now(self) -> datetime:
        """Current wall-clock time in the tenant's timezone."""
        return datetime.now(self.tzinfo)


# ────────────────────────────────────────────────────────────────
# Resolution Functions
# ────────────────────────────────────────────────────────────────

def _host_of(request: Request) -> str:
    host = request.headers.get("host", "")
    return host.split(":", 1)[0].strip().lower()


def resolve_tenant(request: Request) -> TenantContext:
    """
    Resolve tenant context from a request.

    A malformed X-Tenant-ID is ignored (logged) rather than trusted.
    """
    settings = get_settings()

    header_value = (request.headers.get(TENANT_HEADER) or "").strip()
    if header_value:
        if _TENANT_ID_RE.fullmatch(header_value):
            return TenantContext(
                tenant_id=header_value,
                timezone=settings.timezone_for(header_value),
                source=TenantResolutionSource.HEADER,
            )
        logger.warning(f"Ignoring malformed {TENANT_HEADER} header: {header_value[:70]!r}")

    host = _host_of(request)
    mapped: Optional[str] = settings.tenant_domains_map.get(host) if host else None
    if mapped:
        return TenantContext(
            tenant_id=mapped,
            timezone=settings.timezone_for(mapped),
            source=TenantResolutionSource.DOMAIN,
        )

    return TenantContext(
        tenant_id=settings.default_tenant,
        timezone=settings.timezone_for(settings.default_tenant),
        source=TenantResolutionSource.DEFAULT_FALLBACK,
    )


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

async def get_tenant_context(request: Request) -> TenantContext:
    """
    FastAPI dependency to get the tenant context.

    Usage:
        @router.get("/slots")
        async def slots(tenant: TenantContext = Depends(get_tenant_context)):
            ...
    """
    ctx = resolve_tenant(request)
    logger.debug(f"Tenant resolved: {ctx.tenant_id} via {ctx.source.value}")
    return ctx
