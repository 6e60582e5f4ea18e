from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger import jsonlogger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .database import Base, engine
from .guard.engine import LoginGuard
from .guard.sweeper import start_sweeper, stop_sweeper
from .rate_limit import limiter
from .api import routes_admin
from .auth.routes_auth import router as auth_router
from .auth.seed import seed_admin
from . import models as _models  # noqa: F401  register tables

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

def _configure_logging() -> None:
    """Configure structured JSON logging when log_format=json (default)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    root.addHandler(handler)

_configure_logging()

logger = logging.getLogger("epefi.main")

# Initialise database tables on startup
Base.metadata.create_all(bind=engine)

# Seed default admin if no users exist
seed_admin()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = start_sweeper(app.state.login_guard, settings.login_sweep_interval_minutes * 60)
    try:
        yield
    finally:
        await stop_sweeper(sweeper)


app = FastAPI(
    title="EPEFI Backend",
    version="1.0.0",
    description=(
        "Authentication service for the EPEFI educational platform. "
        "Password logins pass through a brute-force guard that tracks failures "
        "per client and applies escalating lockouts."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# One guard per process; lockouts do not survive a restart
app.state.login_guard = LoginGuard()

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Auth and routing errors use the same {"error": ...} body as the login endpoint."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(routes_admin.router)


@app.get("/", tags=["meta"])
def root() -> dict:
    return {
        "message": "EPEFI Backend Running",
        "version": "1.0.0",
        "environment": settings.environment,
    }


@app.get("/health", tags=["meta"])
def health() -> dict:
    return {"status": "healthy", "environment": settings.environment}
