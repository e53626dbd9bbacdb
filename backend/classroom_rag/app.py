"""FastAPI application setup for classroom-rag."""

from __future__ import annotations

import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from classroom_rag.api.dependencies import get_app_settings, get_database
from classroom_rag.api.routes_admin import router as admin_router
from classroom_rag.api.routes_chat import router as chat_router
from classroom_rag.api.routes_documents import router as documents_router
from classroom_rag.core.errors import ClassroomRagError
from classroom_rag.core.logging import configure_logging, get_logger, log_context, request_context
from classroom_rag.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from classroom_rag.models.dto import ErrorResponse
from classroom_rag.utils.ids import new_request_id

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="classroom-rag",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(documents_router, prefix="", tags=["documents"])
app.include_router(chat_router, prefix="", tags=["chat"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.middleware("http")
async def instrument_request(request: Request, call_next):
    started = time.perf_counter()
    request_id = request.headers.get("x-request-id") or new_request_id()
    with request_context(request_id=request_id, account_id=request.headers.get("x-account-id")):
        response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(time.perf_counter() - started)
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
    return response


@app.exception_handler(ClassroomRagError)
async def handle_domain_error(request: Request, exc: ClassroomRagError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request failed",
        extra=log_context(path=request.url.path, code=exc.code, status=exc.status_code, detail=exc.message),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.code, detail=exc.message, retryable=exc.retryable).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = f"{location}: {first.get('msg', 'invalid request')}" if location else "invalid request"
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="validation_error", detail=detail, retryable=False).model_dump(),
    )


@app.on_event("startup")
async def startup() -> None:
    """Open the database and apply the schema on startup."""
    get_app_settings()
    get_database()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
