from fastapi import APIRouter

from fleetdesk.api.v1.routers import access, health, pending, premiums

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(access.router)
api_router.include_router(premiums.router)
api_router.include_router(pending.router)

__all__ = ["api_router"]
