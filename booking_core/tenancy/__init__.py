"""
Multi-tenancy package.

Modules:
    context: TenantContext resolution from header, domain or default
    queries: Tenant-scoped query helpers
"""

from .context import (
    TENANT_HEADER,
    TenantContext,
    TenantResolutionSource,
    get_tenant_context,
    resolve_tenant,
)

__all__ = [
    "TENANT_HEADER",
    "TenantContext",
    "TenantResolutionSource",
    "get_tenant_context",
    "resolve_tenant",
]
