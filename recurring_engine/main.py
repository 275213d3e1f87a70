from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging
import os

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from recurring_engine.database import engine, Base
from recurring_engine.db_helpers import (
    INTERNAL_AUTH_SIGNATURE_HEADER,
    INTERNAL_AUTH_TIMESTAMP_HEADER,
    INTERNAL_AUTH_USER_HEADER,
    authenticate_internal_request_from_headers,
    clear_request_user_id,
    set_request_user_id,
)
from recurring_engine.errors import AppError
from recurring_engine.routes import api_router

logger = logging.getLogger(__name__)

# Paths under /api/ that skip signed internal auth
PUBLIC_API_PATHS = {"/api/health"}


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "y", "on")


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS") or os.getenv("FRONTEND_URL") or "http://localhost:3000"
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


if _env_bool("AUTO_CREATE_TABLES", default=False):
    logger.warning("AUTO_CREATE_TABLES is enabled; creating subscription tables via SQLAlchemy metadata.")
    Base.metadata.create_all(bind=engine)

_docs_enabled = _env_bool("API_DOCS_ENABLED", default=False)

app = FastAPI(
    title="Recurring Engine API",
    description="Detects recurring charges and projects planned payments for confirmed subscriptions",
    version="0.1.0",
    docs_url="/docs" if _docs_enabled else None,
    redoc_url=None,
    openapi_url="/openapi.json" if _docs_enabled else None,
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def _resolve_caller(request: Request) -> str:
    """Verify the X-Recurring-* signature and return the caller's user id."""
    path_with_query = request.url.path
    if request.url.query:
        path_with_query = f"{path_with_query}?{request.url.query}"
    return authenticate_internal_request_from_headers(
        method=request.method,
        path_with_query=path_with_query,
        headers=request.headers,
    )


@app.middleware("http")
async def internal_auth_middleware(request: Request, call_next):
    path = request.url.path
    if request.method == "OPTIONS" or not path.startswith("/api/") or path in PUBLIC_API_PATHS:
        return await call_next(request)

    try:
        user_id = _resolve_caller(request)
    except HTTPException as exc:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    token = set_request_user_id(user_id)
    try:
        return await call_next(request)
    finally:
        clear_request_user_id(token)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        INTERNAL_AUTH_USER_HEADER,
        INTERNAL_AUTH_TIMESTAMP_HEADER,
        INTERNAL_AUTH_SIGNATURE_HEADER,
    ],
)

app.include_router(api_router, prefix="/api")


@app.get("/")
def root():
    return {"message": "Recurring Engine API", "subscriptions": "/api/subscriptions"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/api/health")
def api_health():
    """Liveness plus a database round trip; 503 when the store is unreachable."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error(f"[API] Database health check failed: {exc}")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "unreachable"})
    return {"status": "healthy", "database": "ok"}
