import logging

from fastapi import FastAPI

from fleetdesk.clients.backend import BackendClient
from fleetdesk.services.approval_workflow import WorkflowRegistry

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        if getattr(app.state, "backend_client", None) is None:
            app.state.backend_client = BackendClient()
        app.state.workflow_registry = WorkflowRegistry()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        client = getattr(app.state, "backend_client", None)
        if client is not None:
            await client.aclose()
