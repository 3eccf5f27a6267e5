"""FastAPI dependency injection: services, calling principal, tenant sources."""

from typing import Annotated, Optional

from fastapi import Depends, Request

from iam_core.bootstrap import IamServices
from iam_core.domain.exceptions import PermissionDeniedError
from iam_core.domain.models.identity import Principal
from iam_core.security.tenant_context import TenantSources, resolve_tenant_context

TENANT_HEADER = "X-Tenant-ID"
TENANT_PATH_PARAM = "tenant_id"
TENANT_QUERY_PARAM = "tenant_id"


def get_services(request: Request) -> IamServices:
    """Return the service container attached by create_app()."""
    return request.app.state.services


def get_principal(request: Request) -> Principal:
    """
    The authenticated principal is resolved upstream and placed on request.state.
    A request without one is refused.
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise PermissionDeniedError("Authentication required")
    return principal


def get_tenant_sources(
    request: Request,
    principal: Annotated[Principal, Depends(get_principal)],
) -> TenantSources:
    return TenantSources(
        path_param=request.path_params.get(TENANT_PATH_PARAM),
        header=request.headers.get(TENANT_HEADER),
        query_param=request.query_params.get(TENANT_QUERY_PARAM),
        principal_claim=principal.tenant_id,
    )


def get_tenant_context(
    sources: Annotated[TenantSources, Depends(get_tenant_sources)],
) -> Optional[str]:
    return resolve_tenant_context(sources)
