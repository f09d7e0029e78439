import hmac
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.exc import IntegrityError
from starlette.middleware.base import BaseHTTPMiddleware
from snowops.api.routes import router
from snowops.config import settings
from snowops.modules.path_catalog import SimulatorConfigError
from snowops.modules.telemetry_runtime import TelemetryRuntime
from snowops.modules.visibility import NotFoundError, PermissionDeniedError
from snowops.schemas.error import ErrorResponse

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the GPS simulator and retention janitor when enabled; stop them on shutdown."""
    app.state.telemetry_runtime = None
    runtime = None
    if settings.simulator_enabled:
        runtime = TelemetryRuntime()
        try:
            await runtime.start()
            app.state.telemetry_runtime = runtime
        except SimulatorConfigError as exc:
            logger.critical("GPS simulator configuration invalid, simulator disabled: %s", exc)
            runtime = None
        except Exception as exc:
            logger.error("Failed to start GPS simulator, serving reads only: %s", exc)
            runtime = None
    else:
        logger.info("GPS simulator disabled (APP_ENV=%s)", settings.APP_ENV)
    yield
    if runtime is not None:
        await runtime.stop()


app = FastAPI(
    title="SnowOps Operations",
    description="Vehicle motion simulation and live telemetry for the municipal snow-cleaning fleet.",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS origins from settings (supports comma-separated env var)
cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# API key authentication middleware
class APIKeyMiddleware(BaseHTTPMiddleware):
    """Shared API key check at the edge. If SNOWOPS_API_KEY is unset, all requests pass."""

    async def dispatch(self, request: Request, call_next):
        if settings.SNOWOPS_API_KEY is not None:
            # Allow health check and OpenAPI docs without auth
            if request.url.path not in ("/health", "/docs", "/openapi.json", "/redoc"):
                api_key = request.headers.get("X-API-Key")
                if not hmac.compare_digest(api_key or "", settings.SNOWOPS_API_KEY):
                    return JSONResponse(
                        status_code=401,
                        content={"detail": "Invalid or missing API key"},
                    )
        return await call_next(request)


app.add_middleware(APIKeyMiddleware)

# Rate limiting: 120/min per client covers a live map polling every few seconds
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.RATE_LIMIT_DEFAULT])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.include_router(router, prefix="/api/v1")


# ── Structured error handlers ─────────────────────────────────────────────────

def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, detail=detail).model_dump())


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error(422, "Validation error", str(exc))


@app.exception_handler(PermissionDeniedError)
async def permission_error_handler(request: Request, exc: PermissionDeniedError):
    return _error(403, "Forbidden", str(exc))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(404, "Not found", str(exc))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    return _error(409, "Conflict", str(exc.orig) if exc.orig else str(exc))


@app.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s:\n%s", request.method, request.url.path, traceback.format_exc())
    return _error(500, "Internal server error", "An unexpected error occurred.")


@app.get("/health")
@limiter.exempt
def health() -> dict:
    return {"status": "ok", "version": "0.1.0"}
