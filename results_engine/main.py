"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from results_engine.api.v1.router import api_router
from results_engine.core.config import settings
from results_engine.core.database import AsyncSessionLocal, engine
from results_engine.core.exceptions import AppException, InternalError, ValidationError
from results_engine.core.scheduler import (
    DebounceTimers,
    SchedulerTimers,
    init_scheduler,
    start_scheduler,
    stop_scheduler,
)
from results_engine.middleware.logging import RequestLoggingMiddleware
from results_engine.services.session_registry import SessionRegistry
from results_engine.services.store import ResultsStore, SqlResultsStore

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Suppress noisy SQLAlchemy and scheduler logs
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

DESCRIPTION = """
Exam results reconciliation and grading engine for teacher and admin dashboards.

- **Roster Resolution**: Snapshot-first exam rosters minus exclusions
- **Grading**: Configurable grade scales with a built-in fallback
- **Completion Tracking**: Missing subjects with absence (TH) and opt-out (N/A) handling
- **Weighted Scores**: Academic and conduct averages blended per class
- **Autosave**: Debounced saves that survive rapid switching between classes and subjects

Errors are returned as `{"success": false, "error": {"code", "message", "details"}}`.
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the store, autosave timers and session registry for the app's lifetime."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if app.state.store is None:
        app.state.store = SqlResultsStore(AsyncSessionLocal)
    use_scheduler = app.state.timers is None
    if use_scheduler:
        app.state.timers = SchedulerTimers(init_scheduler())
    app.state.registry = SessionRegistry(app.state.store, app.state.timers)
    if use_scheduler:
        start_scheduler(app.state.registry)

    yield

    logger.info(f"Shutting down; closing {len(app.state.registry)} open sessions")
    await app.state.registry.close_all()
    if use_scheduler:
        stop_scheduler()
    await engine.dispose()


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may hold exception instances that JSON cannot encode
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure in the standard error body."""

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(status_code=exc.status_code, content=exc.body())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        error = ValidationError(
            "Request validation failed",
            details={"errors": jsonable_errors(exc)},
        )
        return JSONResponse(status_code=error.status_code, content=error.body())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
        error = InternalError("An internal server error occurred")
        return JSONResponse(status_code=error.status_code, content=error.body())


def create_application(
    store: ResultsStore | None = None,
    timers: DebounceTimers | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``store`` and ``timers`` replace the SQL store and the APScheduler
    timers, which is how tests run the API without a database.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=DESCRIPTION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.timers = timers

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Liveness plus the number of open dashboard sessions."""
        registry = getattr(request.app.state, "registry", None)
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "open_sessions": len(registry) if registry is not None else 0,
        }

    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return app


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "results_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
