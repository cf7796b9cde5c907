from fastapi import APIRouter

from bidbridge.api.v1.conversations import router as conversations_router
from bidbridge.api.v1.notifications import router as notifications_router
from bidbridge.api.v1.projects import router as projects_router
from bidbridge.api.v1.quotes import router as quotes_router

v1_router = APIRouter()

v1_router.include_router(projects_router)
v1_router.include_router(quotes_router)
v1_router.include_router(conversations_router)
v1_router.include_router(notifications_router)
