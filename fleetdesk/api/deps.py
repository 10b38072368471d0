from fastapi import Depends, Header, HTTPException, Request, status

from fleetdesk.clients.backend import BackendClient
from fleetdesk.core.context import set_subject_id
from fleetdesk.core.permissions import Permission
from fleetdesk.core.errors import AuthExpired
from fleetdesk.core.security import decode_subject, get_bearer_token
from fleetdesk.schemas.principals import Principal
from fleetdesk.services import authz, principals
from fleetdesk.services.approval_workflow import ApprovalWorkflow, WorkflowRegistry


def get_backend_client(request: Request) -> BackendClient:
    return request.app.state.backend_client


def get_workflow_registry(request: Request) -> WorkflowRegistry:
    return request.app.state.workflow_registry


async def get_session_token(authorization: str | None = Header(default=None)) -> str:
    token = get_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not signed in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


async def get_current_principal(
    token: str = Depends(get_session_token),
    client: BackendClient = Depends(get_backend_client),
    registry: WorkflowRegistry = Depends(get_workflow_registry),
) -> Principal:
    try:
        principal = await principals.load_principal(client, token)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except AuthExpired:
        # the token decoded before the directory refused it
        registry.discard(decode_subject(token).subject_id)
        raise
    set_subject_id(principal.subject_id)
    return principal


def require_permission(permission: Permission):
    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not authz.has_permission(principal, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission.value}",
            )
        return principal

    return dependency


async def get_workflow(
    principal: Principal = Depends(require_permission(Permission.INSURED_OBJECT_UPDATE)),
    token: str = Depends(get_session_token),
    client: BackendClient = Depends(get_backend_client),
    registry: WorkflowRegistry = Depends(get_workflow_registry),
) -> ApprovalWorkflow:
    return registry.get(client, principal, token)
