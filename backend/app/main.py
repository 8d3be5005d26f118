"""FoamSync Backend API - FastAPI application."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import get_settings
from .database import get_store
from .logging_config import configure_logging, get_logger
from .rate_limit import limiter
from .routes import api_router
from .sync import EstimateNotFoundError, TenantResolutionError

logger = get_logger("foamsync.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        f"Starting FoamSync Backend API (debug={settings.debug}, store={settings.store_backend})"
    )
    yield
    logger.info("Shutting down FoamSync Backend API")


app = FastAPI(
    title="FoamSync Backend API",
    description="State sync and reconciliation for spray-foam job costing",
    version=__version__,
    lifespan=lifespan,
)


def _error(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "message": message},
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error(400, "Malformed request")


@app.exception_handler(TenantResolutionError)
async def tenant_exception_handler(request: Request, exc: TenantResolutionError):
    return _error(404, str(exc))


@app.exception_handler(EstimateNotFoundError)
async def estimate_not_found_handler(request: Request, exc: EstimateNotFoundError):
    return _error(404, str(exc))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return _error(429, f"Rate limit exceeded: {exc.detail}")


# Rate limiting
app.state.limiter = limiter

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS", "GET"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/")
async def root():
    """Service banner."""
    return {
        "service": "foamsync-backend",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Health check with an actual store round-trip."""
    try:
        store = get_store()
        connected = await asyncio.to_thread(store.ping)
        db_status = "connected" if connected else "disconnected"
    except Exception as e:
        db_status = f"error: {str(e)[:50]}"

    overall_status = "healthy" if db_status == "connected" else "degraded"
    return {
        "status": overall_status,
        "database": db_status,
    }
