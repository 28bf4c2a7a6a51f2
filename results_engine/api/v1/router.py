"""Main API router aggregating all module routers."""

from fastapi import APIRouter

from results_engine.api.v1.endpoints import exams, sessions

api_router = APIRouter()

# Dashboard sessions
api_router.include_router(
    sessions.router,
    prefix="/sessions",
    tags=["Dashboard Sessions"],
)

# Exams (read-only lookups)
api_router.include_router(
    exams.router,
    prefix="/exams",
    tags=["Exams"],
)
