import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.v1.router import api_v1_router
from app.core.config import settings, validate_settings_for_production
from app.core.dependencies import GatewayServices, get_services, shutdown_services
from app.core.logging import redact, setup_logging
from app.core.metrics import PrometheusMiddleware, metrics_response
from app.core.rate_limit import limiter
from app.core.sentry import init_sentry
from app.db.postgres import engine

# Configure logging before anything else
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    init_sentry()
    get_services()
    logger.info("Starting %s gateway (env=%s)", settings.app_name, settings.app_env)

    yield

    # Shutdown
    await shutdown_services()
    await engine.dispose()
    logger.info("%s gateway shut down", settings.app_name)


app = FastAPI(
    title="Chat Widget AI Gateway",
    description="Embeddable chat widget backend routing messages to nine AI vendors",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, redact("".join(tb)))
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# Rate limiter (admin endpoints; chat uses the sliding-window limiter)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(PrometheusMiddleware)

# CORS: parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials="*" not in _origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(api_v1_router)


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()


@app.get("/api/v1/health")
async def health(services: GatewayServices = Depends(get_services)):
    return {
        "status": "ok",
        "providers": [p.value for p in services.registry.provider_types],
        "state_backend": "redis" if services.redis is not None else "in-process",
    }
