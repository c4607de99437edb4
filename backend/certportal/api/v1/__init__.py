"""API v1 package."""
from fastapi import APIRouter

from certportal.api.v1 import auth

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth.router, tags=["auth"])

__all__ = ["api_router"]
