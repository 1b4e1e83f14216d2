"""
Main API router that includes all route modules.
"""
from fastapi import APIRouter
from tabtrust.api.routes import tabs, users

api_router = APIRouter()

# Include all route modules
api_router.include_router(tabs.router)
api_router.include_router(users.router)
