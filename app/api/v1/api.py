"""
API v1 router: health plus the integrations surface.
"""
from fastapi import APIRouter

from app.api.v1.endpoints import health
from app.integrations.router import router as integrations_router

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(integrations_router)
