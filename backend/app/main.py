import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from sqlmodel import Session, text

from app.agents.completion import CompletionService
from app.api.api_router import api_router
from app.core.config import settings
from app.core.db import engine, init_db
from app.core.errors import PipelineError
from app.core.logging import setup_logging
from app.core.tracing import setup_tracing
from app.jobs.factory import create_job_queue, register_pipeline
from app.store.records import RecordStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging(settings.LOG_LEVEL)
    setup_tracing()
    init_db()

    app.state.record_store = RecordStore(engine)
    app.state.completion_service = CompletionService()
    app.state.job_queue = create_job_queue(settings)

    async with app.state.job_queue as queue:
        # An in-memory queue cannot be shared with a worker process
        if settings.QUEUE_BACKEND == "memory":
            register_pipeline(
                queue, app.state.record_store, app.state.completion_service, settings
            )
            await queue.start()

        yield

    # Shutdown: consumers stopped and queue closed by the context manager


app = FastAPI(
    title=settings.APP_NAME,
    lifespan=lifespan,
)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALL_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_PREFIX)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    logger.warning(
        "Request failed",
        extra={"path": request.url.path, "error_code": exc.error_code}
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "error_code": exc.error_code},
    )


@app.get("/healthz")
async def health_check(request: Request):
    """Health check endpoint that verifies database and job queue connectivity."""
    health_status = {
        "status": "healthy",
        "services": {
            "database": "unknown",
            "queue": "unknown",
        }
    }

    # Check database
    try:
        with Session(engine) as session:
            session.exec(text("SELECT 1"))
            health_status["services"]["database"] = "healthy"
    except Exception as e:
        health_status["services"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    # Check job queue
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        health_status["services"]["queue"] = "not started"
        health_status["status"] = "degraded"
    else:
        try:
            await queue.ping()
            health_status["services"]["queue"] = f"healthy ({settings.QUEUE_BACKEND})"
        except Exception as e:
            health_status["services"]["queue"] = f"unhealthy: {str(e)}"
            health_status["status"] = "degraded"

    return health_status
