import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.core.logging import setup_logging

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("SaaSify hosting API starting up (region=%s)", settings.AWS_REGION)
    yield
    logger.info("SaaSify hosting API shutting down")


app = FastAPI(
    title="SaaSify Hosting",
    description="Static and dynamic hosting provisioning for SaaSify domains",
    version="0.1.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER],
)


def _is_polling(path: str) -> bool:
    # Health checks and progress polling would drown everything else at INFO
    return path == "/health" or path.endswith("/progress")


def _log_request(request_id: str, request: Request, status_code: int, started: float) -> None:
    duration_ms = (time.perf_counter() - started) * 1000
    if _is_polling(request.url.path) and status_code < 400:
        level = logging.DEBUG
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(
        level,
        "[%s] %s %s -> %d (%.1fms)",
        request_id,
        request.method,
        request.url.path,
        status_code,
        duration_ms,
    )


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Tag each request with an id (the caller's, if sent) and log the outcome."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
    request.state.request_id = request_id
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception:
        logger.exception("[%s] Unhandled error in %s %s", request_id, request.method, request.url.path)
        _log_request(request_id, request, 500, started)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
            headers={REQUEST_ID_HEADER: request_id},
        )

    response.headers[REQUEST_ID_HEADER] = request_id
    _log_request(request_id, request, response.status_code, started)
    return response


app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
