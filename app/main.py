from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.core.exceptions import (
    AuthorizationCoreError,
    RoleConflictError,
    RoleNotFoundError,
    RolePrivilegeError,
    RoleValidationError,
)
from app.features.users.routes import router as user_router
from app.features.permissions.routes import router as permission_router
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="CMS Authorization Service",
    description="Organization-scoped roles and permission resolution for the CMS admin",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header, default_limits=[config.RATE_LIMIT_DEFAULT])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


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


@app.exception_handler(RoleValidationError)
async def role_validation_exception_handler(_request: Request, exc: RoleValidationError):
    log.info("Role validation error field=%s: %s", exc.field, exc.message)
    return JSONResponse(status_code=400, content={"error": exc.message, "field": exc.field})


@app.exception_handler(RoleNotFoundError)
async def role_not_found_exception_handler(_request: Request, exc: RoleNotFoundError):
    return JSONResponse(status_code=404, content={"error": exc.message})


@app.exception_handler(RoleConflictError)
async def role_conflict_exception_handler(_request: Request, exc: RoleConflictError):
    log.info("Role conflict: %s", exc.message)
    return JSONResponse(status_code=409, content={"error": exc.message})


@app.exception_handler(RolePrivilegeError)
async def role_privilege_exception_handler(_request: Request, exc: RolePrivilegeError):
    log.warning("Role privilege escalation refused: %s", exc.message)
    return JSONResponse(status_code=403, content={"error": exc.message})


@app.exception_handler(AuthorizationCoreError)
async def authorization_core_exception_handler(_request: Request, exc: AuthorizationCoreError):
    log.error("Unhandled authorization error: %s", exc.message)
    return JSONResponse(status_code=400, content={"error": exc.message})


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
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
        "message": "CMS Authorization Service",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/users/*", "/permissions/*"],
            "public_endpoints": ["/", "/health"]
        },
        "features": {
            "permissions": "Resource/action catalog, system roles and effective permission queries",
            "custom_roles": "Organization-scoped roles inheriting from a system role with overrides",
            "users": "Current user profile and organization members",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])

# Permission and custom role routes
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
