"""Main API router — aggregates all endpoint modules."""

from fastapi import APIRouter

from poiesis.api.admin import router as admin_router
from poiesis.api.chat import router as chat_router

api_router = APIRouter()

api_router.include_router(chat_router, tags=["chat"])
api_router.include_router(admin_router, prefix="/admin", tags=["admin"])
