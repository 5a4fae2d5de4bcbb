import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .db import Base, engine, SessionLocal
from .logging import setup_logging, RequestIdMiddleware, structlog
from .auth.router import router as auth_router
from .routes.permits import router as permits_router
from .routes.approvals import router as approvals_router
from .routes.users import router as users_router
from .routes.roles import router as roles_router
from .routes.dashboard import router as dashboard_router
from .routes.meters import router as meters_router
from .services.roles import seed_default_roles


API_PREFIX = "/api"


def _http_error(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    body = dict(detail) if isinstance(detail, dict) else {"message": detail}
    body.setdefault("message", "Request failed")
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


def _validation_error(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": e.get("msg")}
        for e in exc.errors()
    ]
    message = errors[0]["message"] if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"message": message, "errors": errors})


def _rate_limited(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"message": f"Too many requests: {exc.detail}"})


def _unhandled(request: Request, exc: Exception):
    structlog.get_logger().exception("unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limited)
    app.add_middleware(SlowAPIMiddleware)

    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(HTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _unhandled)

    # Routers
    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(permits_router, prefix=API_PREFIX)
    app.include_router(approvals_router, prefix=API_PREFIX)
    app.include_router(users_router, prefix=API_PREFIX)
    app.include_router(roles_router, prefix=API_PREFIX)
    app.include_router(dashboard_router, prefix=API_PREFIX)
    app.include_router(meters_router, prefix=API_PREFIX)

    @app.get(API_PREFIX + "/health")
    def health():
        return {"status": "OK", "app": settings.app_name, "environment": settings.environment}

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log = structlog.get_logger()
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        db = SessionLocal()
        try:
            created = seed_default_roles(db)
            log.info("startup_complete", roles_seeded=created, environment=settings.environment)
            if settings.otp_echo and not settings.is_dev:
                log.warning("otp_echo_enabled", environment=settings.environment)
        finally:
            db.close()

    return app


app = create_app()
