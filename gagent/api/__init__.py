"""API routes for GAgent."""

from fastapi import APIRouter

from gagent.api.agent import router as agent_router
from gagent.api.ai import router as ai_router
from gagent.api.projects import router as projects_router
from gagent.api.templates import router as templates_router

api_router = APIRouter(prefix="/api")
api_router.include_router(agent_router, tags=["agent"])
api_router.include_router(projects_router, tags=["projects"])
api_router.include_router(ai_router, tags=["ai"])
api_router.include_router(templates_router, tags=["templates"])

__all__ = ["api_router"]
