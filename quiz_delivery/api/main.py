"""
FastAPI application entry point.

Notion delivery API for completed quiz attempts.
Optional API key authentication (API_AUTH_ENABLED / API_KEY).
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from quiz_delivery import __version__
from quiz_delivery.infra.data_paths import (
    ensure_data_directories,
    get_attempts_dir,
    get_delivery_db_path,
    get_delivery_workers,
    get_log_level,
    get_logs_dir,
    is_recovery_enabled,
)
from quiz_delivery.infra.logging_config import setup_logging
from .routers import delivery
from .dependencies.auth import verify_api_key, API_AUTH_ENABLED
from ._delivery_state import init_delivery_service, shutdown_delivery_service


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: logging, data directories, delivery service, crash recovery.
    Shutdown: waits for in-flight delivery jobs.
    """
    setup_logging(get_log_level(), get_logs_dir())
    ensure_data_directories()

    service = init_delivery_service(
        db_path=get_delivery_db_path(),
        attempts_dir=get_attempts_dir(),
        max_workers=get_delivery_workers(),
    )
    logger.info(f"Delivery service started in {service.mode.value} mode")

    if is_recovery_enabled():
        service.recover()

    yield

    shutdown_delivery_service()


tags_metadata = [
    {
        "name": "delivery",
        "description": "Notion delivery of graded quiz attempts - background jobs with progress polling",
    },
]

app = FastAPI(
    title="Quiz Attempt Notion Delivery API",
    lifespan=lifespan,
    description="""
## Quiz Attempt Notion Delivery API

Pushes every graded question of a completed quiz attempt into a Notion
database as one page per question. Delivery runs as a tracked background
job; clients poll for progress.

### Authentication
- `X-User-Id`: the signed-in user (required on delivery endpoints)
- `X-API-Key`: required when `API_AUTH_ENABLED=true`

### Usage
```bash
uvicorn quiz_delivery.api.main:app --host 127.0.0.1 --port 8000

curl -X POST http://localhost:8000/me/attempts/<attempt_id>/deliver-notion \\
  -H "X-User-Id: <user_id>"
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"message": "internal server error"})


# Health check - NO authentication
@app.get("/health")
async def health_check():
    """Health check endpoint. Not authenticated."""
    return {"status": "ok", "version": __version__}


auth_dependency = [Depends(verify_api_key)] if API_AUTH_ENABLED else []

app.include_router(
    delivery.router, prefix="/me/attempts", tags=["delivery"], dependencies=auth_dependency
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
