from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from datetime import datetime
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
import time
import uuid

from signless.api.v1 import signless
from signless.core.config import settings
from signless.core.errors import SignlessError
from signless.core.logging_config import configure_logging, get_core_logger, get_uvicorn_log_config
from signless.core.version import get_version, get_version_info
from signless.db.database import engine
from signless.services.relay_client import GelatoRelayClient
from signless.services.submission_tracker import SubmissionTracker
from signless.services.submissions import SubmissionService

configure_logging()
logger = get_core_logger()

# Global variables for container diagnostics
APP_START_TIME = None
CONTAINER_ID = str(uuid.uuid4())
APP_VERSION = get_version()

app = FastAPI(
    title="Signless Relay",
    description="Delegated, gasless Safe transaction submission through the Signless module",
    version=APP_VERSION,
    redirect_slashes=False,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(SignlessError)
async def signless_exception_handler(request: Request, exc: SignlessError):
    return JSONResponse(
        status_code=exc.get_http_status_code(),
        content={
            "error": {
                "message": exc.message,
                "type": exc.error_type,
                "param": None,
                "code": None
            }
        }
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception",
                 path=request.url.path,
                 error=str(exc),
                 event_type="unhandled_exception",
                 exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": str(exc),
                "type": exc.__class__.__name__,
                "param": None,
                "code": None
            }
        }
    )


@app.on_event("startup")
async def startup_event():
    """
    Create the shared relay client and submission bookkeeping.
    """
    global APP_START_TIME
    APP_START_TIME = datetime.utcnow()

    relay_client = GelatoRelayClient.create()
    tracker = SubmissionTracker()
    app.state.relay_client = relay_client
    app.state.submission_tracker = tracker
    app.state.submission_service = SubmissionService(relay_client, tracker)

    logger.info("Application startup complete",
                container_id=CONTAINER_ID,
                version=APP_VERSION,
                environment=settings.ENVIRONMENT,
                configured_chains=sorted(settings.CHAIN_RPC_URLS),
                event_type="startup_complete")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Cancel in-flight submissions and close the relay client.
    """
    await app.state.submission_tracker.aclose()
    await app.state.relay_client.aclose()
    logger.info("Application shutdown complete", event_type="shutdown_complete")


app.include_router(signless, prefix=f"{settings.API_V1_STR}/signless")


@app.get("/", include_in_schema=True)
async def root():
    return {
        "name": settings.PROJECT_NAME,
        "version": APP_VERSION,
        "documentation": {
            "swagger_ui": "/docs"
        }
    }


async def check_db_connection(engine: AsyncEngine):
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


@app.get("/health", include_in_schema=True)
async def health_check():
    """
    Health check endpoint with version and database status.
    """
    current_time = datetime.utcnow()

    try:
        await check_db_connection(engine)
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    uptime_seconds = None
    if APP_START_TIME:
        uptime_seconds = int((current_time - APP_START_TIME).total_seconds())

    return {
        "status": "ok",
        "timestamp": current_time.isoformat(),
        **get_version_info(),
        "database": db_status,
        "container": {"id": CONTAINER_ID},
        "uptime": {
            "seconds": uptime_seconds,
            "started_at": APP_START_TIME.isoformat() if APP_START_TIME else None
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, log_config=get_uvicorn_log_config())
