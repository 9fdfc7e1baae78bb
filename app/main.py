from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.core.errors import GovernanceError
from app.core.rate_limit import limiter
from app.features.members.routes import router as member_router
from app.features.permissions.routes import router as permission_router
from app.features.notifications.routes import router as notification_router
from app.features.audit.routes import router as audit_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Membership Governance",
    description="Role and permission governance for the membership portal",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


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


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error on %s: %s", request.url.path, errors)
    content = {"error": "validation_error", "detail": "Invalid request", "fields": errors}
    return JSONResponse(status_code=400, content=jsonable_encoder(content))


@app.exception_handler(GovernanceError)
async def governance_exception_handler(request: Request, exc: GovernanceError):
    if exc.retryable:
        log.error("Retryable failure on %s: %s", request.url.path, exc.detail)
    else:
        log.info("%s on %s: %s", exc.kind, request.url.path, exc.detail)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "rate_limited", "detail": "You are going too fast"}, status_code=429)


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
        "message": "Membership Governance API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require an Appwrite JWT as Bearer token in Authorization header",
            "protected_endpoints": ["/members/*", "/permissions/*", "/notifications/*", "/audit/*"],
            "public_endpoints": ["/", "/health"]
        },
        "features": {
            "members": "Member directory and batch role transitions",
            "permissions": "Capability requests, approvals, grants and revokes",
            "notifications": "Per-member governance notifications",
            "audit": "Audit trail of governance actions"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


app.include_router(member_router, prefix="/members", tags=["members"])
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
app.include_router(notification_router, prefix="/notifications", tags=["notifications"])
app.include_router(audit_router, prefix="/audit", tags=["audit"])
