"""
API Router v1

Combines all route modules.
"""

from fastapi import APIRouter

from app.api.v1.routes import strava, sync, webhooks

api_router = APIRouter()

api_router.include_router(strava.router, tags=["Strava"])
api_router.include_router(sync.router, tags=["Sync"])
api_router.include_router(webhooks.router, tags=["Webhooks"])
