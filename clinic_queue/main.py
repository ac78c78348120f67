"""Main FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_queue import __version__
from clinic_queue.api.endpoints import queue_error_handler, router
from clinic_queue.config import QueueConfig
from clinic_queue.errors import QueueError
from clinic_queue.services.demo_data import seed_demo_data
from clinic_queue.services.queue import get_queue_engine
from clinic_queue.services.session_manager import get_session_manager
from clinic_queue.utils.logging import LogConfig, get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    config = QueueConfig.from_env()
    setup_logging(LogConfig(level=config.log_level))

    if config.seed_demo:
        await seed_demo_data(get_queue_engine())

    if config.bootstrap_admin:
        session = get_session_manager().open_session(config.bootstrap_admin)
        logger.info(f"Bootstrap session for {config.bootstrap_admin}: {session.session_id}")

    yield


# Create FastAPI application
app = FastAPI(
    title="Clinic Queue",
    description=(
        "Daily patient queue for a single clinic: patient registry, queue numbers, "
        "consultation status tracking and CSV export."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Visits", "description": "Today's queue: enqueue, advance, edit and remove visits."},
        {"name": "Patients", "description": "Patient registry with visit statistics."},
        {"name": "Export", "description": "CSV downloads of visits and patients."},
        {"name": "Health", "description": "Service health monitoring and status checks."},
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(QueueError, queue_error_handler)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Include routers
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("clinic_queue.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
