from fastapi import APIRouter, Depends, Query

from fleetdesk.api import deps
from fleetdesk.clients.backend import BackendClient
from fleetdesk.schemas.access import (
    ALL_MEMBERSHIPS,
    UNRESTRICTED,
    FieldConfig,
    FieldConfigResponse,
    OrganizationAccessResponse,
    OrganizationScope,
    Scope,
)
from fleetdesk.schemas.principals import Principal, PrincipalDTO
from fleetdesk.services import authz

router = APIRouter(prefix="/access", tags=["access"])


def parse_scope(principal: Principal, organization: str | None, all_memberships: bool) -> Scope:
    if all_memberships:
        return ALL_MEMBERSHIPS
    if organization:
        return OrganizationScope(name=organization)
    return authz.default_scope(principal)


async def resolve_for_request(
    principal: Principal,
    token: str,
    client: BackendClient,
    scope: Scope,
) -> FieldConfig | None:
    async def fetch(name: str) -> FieldConfig | None:
        return await client.get_organization_config(token, name)

    return await authz.resolve_effective_field_config(principal, scope, fetch)


@router.get("/me", response_model=PrincipalDTO, summary="Signed-in principal")
async def read_me(principal: Principal = Depends(deps.get_current_principal)) -> PrincipalDTO:
    return PrincipalDTO.from_principal(principal)


@router.get("/field-config", response_model=FieldConfigResponse, summary="Effective field configuration")
async def read_field_config(
    organization: str | None = Query(default=None),
    all_memberships: bool = Query(default=False),
    principal: Principal = Depends(deps.get_current_principal),
    token: str = Depends(deps.get_session_token),
    client: BackendClient = Depends(deps.get_backend_client),
) -> FieldConfigResponse:
    scope = UNRESTRICTED if principal.is_admin else parse_scope(principal, organization, all_memberships)
    config = await resolve_for_request(principal, token, client, scope)
    return FieldConfigResponse(scope=scope, unrestricted=config is None, fields=config or {})


@router.get(
    "/organizations/{organization}",
    response_model=OrganizationAccessResponse,
    summary="Whether the principal can reach an organization",
)
async def read_organization_access(
    organization: str,
    principal: Principal = Depends(deps.get_current_principal),
) -> OrganizationAccessResponse:
    return OrganizationAccessResponse(
        organization=organization,
        accessible=authz.can_access_organization(principal, organization),
    )
