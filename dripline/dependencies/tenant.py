"""
Tenant scoping for FastAPI routes.

The CRM gateway authenticates the caller and forwards the tenant it acts
for in the X-Tenant-ID header.

SECURITY: All queries MUST include tenant_id filter.
Failure to do so will result in data leakage between tenants.
"""
from fastapi import Header, HTTPException, status


async def get_tenant_id(x_tenant_id: str | None = Header(default=None)) -> str:
    """
    Dependency that requires a tenant header.

    Usage:
        @router.get("/sequences")
        async def list_sequences(tenant_id: str = Depends(get_tenant_id)):
            ...
    """
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return x_tenant_id.strip()
