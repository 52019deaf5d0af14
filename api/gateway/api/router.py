from fastapi import APIRouter

from gateway.api.routes import admin, health, namespaces, provisioning

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(provisioning.router, prefix="/dbaas/patroni/instances", tags=["dbaas"])
api_router.include_router(namespaces.router, prefix="/kubernetes/namespaces", tags=["kubernetes"])
api_router.include_router(admin.router, prefix="/kubernetes/admin", tags=["admin"])
