"""FastAPI application entrypoint.

Assembles the API: CORS, the request context middleware (request ids,
structured request logs, request metrics), exception translation for the
service-layer errors, static upload serving and the `/api` routers.
"""

import json
import logging
import os
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from .config import settings
from .database import create_db_and_tables
from .errors import NotFoundError, PermissionDenied
from .routes import ROUTERS
from .services.admin import record_crash
from .utils import metrics

app = FastAPI(title="Classora API")
logger = logging.getLogger("classora.api")
if not logging.getLogger().handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

create_db_and_tables()


def _request_log(request: Request, req_id: str, elapsed_ms: float, status_code=None) -> str:
    event = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "duration_ms": elapsed_ms,
        "client": request.client.host if request.client else "unknown",
    }
    if status_code is not None:
        event["status_code"] = status_code
    return json.dumps(event, ensure_ascii=True)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        metrics.record_request(request.url.path, request.method, 500, elapsed_ms)
        logger.exception("request_failed %s", _request_log(request, req_id, elapsed_ms))
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        metrics.record_request(request.url.path, request.method, response.status_code, elapsed_ms)
        logger.info("request_done %s", _request_log(request, req_id, elapsed_ms, response.status_code))
    return response


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Request, exc: PermissionDenied):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    req_id = getattr(request.state, "request_id", None) or uuid.uuid4().hex
    user_id = None
    raw_user = request.headers.get("x-user-id")
    if settings.TRUST_USER_ID_HEADER and raw_user and raw_user.isdigit():
        user_id = int(raw_user)
    logger.error("unhandled_exception request_id=%s path=%s", req_id, request.url.path, exc_info=exc)
    record_crash(exc, url=str(request.url.path), method=request.method,
                 user_agent=request.headers.get("user-agent"), request_id=req_id, user_id=user_id)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error_id": req_id})


@app.get("/health")
def health():
    return {"status": "ok", "env": settings.ENV}


for router in ROUTERS:
    app.include_router(router, prefix="/api")
