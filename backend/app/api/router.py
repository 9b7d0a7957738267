"""SecurityX API Router - aggregates all API routes."""

from fastapi import APIRouter

from app.api import auth, cors, health, origins

# Main API router - all routes will be prefixed with /api
api_router = APIRouter(prefix="/api")

# Include routers
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(origins.router)
api_router.include_router(cors.router)
