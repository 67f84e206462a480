import time

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded as SessionRateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from answly.core import config
from answly.core.clock import SystemClock, get_clock
from answly.core.database.engine import AsyncSessionLocal, init_db
from answly.core.exceptions import AccessError
from answly.features.api_keys.counters import SqlCounterStore
from answly.features.api_keys.routes import router as api_key_router
from answly.features.api_keys.service import ApiKeyService
from answly.features.organizations.routes import router as organization_router
from answly.features.permissions.routes import router as permission_router
from answly.features.users.dependencies import limiter
from answly.features.users.routes import router as user_router
from answly.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Answly Backend",
    description="Authorization core: scoped permission grants and API key gating",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter
app.state.clock = SystemClock()


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.answly.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def track_api_key_usage(request: Request, call_next):
    """Record one usage row for every request the API key gate admitted."""
    started = time.perf_counter()
    response = await call_next(request)

    api_key = getattr(request.state, "api_key", None)
    if api_key is not None:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        async with AsyncSessionLocal() as db:
            service = ApiKeyService(db, get_clock(request), SqlCounterStore(db))
            try:
                await service.track_usage(
                    key_id=api_key.id,
                    endpoint=request.url.path,
                    method=request.method,
                    status_code=response.status_code,
                    response_time_ms=elapsed_ms,
                )
                await db.commit()
            except SQLAlchemyError:
                # A lost usage row must not fail a response that is already built
                log.exception(f"Failed to record usage for API key {api_key.id}")

    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        # Report list items under the field that holds them
        key = next((part for part in reversed(error["loc"]) if isinstance(part, str)), "__root__")
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError) -> Response:
    log.info("%s %s denied: %s (%s)", request.method, request.url.path, exc.error, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SessionRateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: SessionRateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Answly Backend API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "session": "Bearer token in Authorization header",
            "api_key": "x-api-key header on /api-keys/self",
        },
        "features": {
            "permissions": "Organization-scoped, time-bounded permission grants with ADMIN bypass",
            "organizations": "Organizations and their members",
            "users": "Users with platform roles",
            "api_keys": "Organization API keys with per-key rate window and daily quota",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])
app.include_router(organization_router, prefix="/organizations", tags=["organizations"])
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
app.include_router(api_key_router, prefix="/api-keys", tags=["api-keys"])
