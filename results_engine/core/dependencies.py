"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, Path, Request

from results_engine.services.session import ExamSession
from results_engine.services.session_registry import SessionRegistry
from results_engine.services.store import ResultsStore


def get_store(request: Request) -> ResultsStore:
    """Store of record created in the application lifespan."""
    return request.app.state.store


def get_registry(request: Request) -> SessionRegistry:
    """Registry of open dashboard sessions."""
    return request.app.state.registry


def get_session(
    registry: Annotated[SessionRegistry, Depends(get_registry)],
    session_id: str = Path(..., description="Dashboard session id"),
) -> ExamSession:
    """Resolve the dashboard session named in the path; 404 if unknown."""
    return registry.get(session_id)


StoreDep = Annotated[ResultsStore, Depends(get_store)]
RegistryDep = Annotated[SessionRegistry, Depends(get_registry)]
SessionDep = Annotated[ExamSession, Depends(get_session)]
