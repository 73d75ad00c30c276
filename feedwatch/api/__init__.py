from fastapi import APIRouter

from feedwatch.api.monitor import router as monitor_router
from feedwatch.api.posts import router as posts_router

api_router = APIRouter(prefix="/api")

api_router.include_router(monitor_router)
api_router.include_router(posts_router)
