import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gallery_admin.api.v1.api import api_router
from gallery_admin.config import settings
from gallery_admin.core.capabilities import registry
from gallery_admin.core.errors import GovernanceError
from gallery_admin.db.session import engine, get_pool_status
from gallery_admin.logging_config import setup_logging
from gallery_admin.middleware.metrics import PrometheusMiddleware, metrics_endpoint, set_app_info
from gallery_admin.middleware.request_logging import RequestLoggingMiddleware
from gallery_admin.services.flag_admin import FEATURE_FLAGS_CAPABILITY
from gallery_admin.services.flag_queries import select_flag_query_backend

__version__ = "1.0.0"

# ── Initialize structured logging ──
setup_logging()
logger = logging.getLogger("gallery_admin")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail at deploy time, not on the first admin request
    registry.ensure_registered(FEATURE_FLAGS_CAPABILITY, "system.view_audit")
    app.state.flag_query_backend = select_flag_query_backend(engine)
    yield


app = FastAPI(
    title=settings.APP_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# Set all CORS enabled origins
cors_origins = ["http://localhost:3000"]
if settings.BACKEND_CORS_ORIGINS:
    cors_origins.extend(
        [origin.strip() for origin in settings.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request logging middleware: request ID, client IP, timing
app.add_middleware(RequestLoggingMiddleware)

# Prometheus metrics middleware: request count, latency, in-progress
app.add_middleware(PrometheusMiddleware)


@app.exception_handler(GovernanceError)
async def governance_error_handler(request: Request, exc: GovernanceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
def health_check(request: Request):
    backend = getattr(request.app.state, "flag_query_backend", None)
    return {
        "status": "ok",
        "env": settings.APP_ENV,
        "flag_query_backend": backend.name if backend is not None else None,
        "db_pool": get_pool_status(),
    }


# Prometheus metrics endpoint
app.add_route("/metrics", metrics_endpoint)
set_app_info(version=__version__, env=settings.APP_ENV)
