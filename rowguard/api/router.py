from fastapi import APIRouter

from rowguard.api.v1 import admin, me, resources

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(resources.router)
api_router.include_router(me.router)
api_router.include_router(admin.router)
