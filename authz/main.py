from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from authz.core import config
from authz.core.database.engine import init_db
from authz.core.errors import AuthzError
from authz.core.limiter import limiter
from authz.features.audit.sink import DatabaseAuditSink, get_audit_sink
from authz.features.resources.routes import router as resource_router
from authz.features.roles.routes import router as role_router
from authz.features.permissions.routes import router as permission_router
from authz.features.data_scopes.routes import router as data_scope_router
from authz.features.field_access.routes import router as field_access_router
from authz.features.audit.routes import router as audit_router
from authz.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Authz Engine",
    description="Hierarchical role, data scope and field access authorization service",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.authz.features."), timing=timing, tags=tags))


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


@app.exception_handler(AuthzError)
async def authz_exception_handler(_request: Request, exc: AuthzError):
    if exc.status_code >= 500:
        log.error("Request failed: %s", exc.detail)
    else:
        log.info("Request rejected (%s): %s", exc.error, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.on_event("shutdown")
async def shutdown():
    """Wait for audit log writes still in flight."""
    sink = get_audit_sink()
    if isinstance(sink, DatabaseAuditSink):
        await sink.drain()


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Authz Engine API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "identity": {
            "info": "Requests carry X-Tenant-ID and X-User-ID headers set by the upstream gateway",
        },
        "features": {
            "resources": "Module registry and per-module resource trees",
            "roles": "Tenant roles, role templates and user role assignments",
            "permissions": "Effective permission resolution with hierarchical fallback",
            "data_scopes": "Row-level scope rules compiled to storage filters",
            "field_access": "Field-level access rules and masking",
            "audit_logs": "Decision and administration audit trail",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(resource_router, prefix="/resources", tags=["resources"])
app.include_router(role_router, prefix="/roles", tags=["roles"])
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
app.include_router(data_scope_router, prefix="/data-scopes", tags=["data-scopes"])
app.include_router(field_access_router, prefix="/field-access", tags=["field-access"])
app.include_router(audit_router, prefix="/audit-logs", tags=["audit-logs"])
