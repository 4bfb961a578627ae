import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from cadogy.core.config import Settings, settings as default_settings
from cadogy.core.database import Base, create_db_engine, create_session_factory
from cadogy.core.exceptions import AppError
from cadogy.core.scheduler import start_scheduler, stop_scheduler
from cadogy.api.guard import RouteGuardMiddleware
from cadogy.api.routes import admin, auth, dashboard, payments, public, settings as settings_routes, user
from cadogy.services.captcha_service import build_captcha_verifier
from cadogy.services.email_service import build_email_service
from cadogy.services.payment_service import build_payment_gateway

# Import models so every table is registered on Base.metadata before create_all
from cadogy.models import (  # noqa: F401
    api_key,
    api_usage,
    notification_preference,
    site_settings,
    subscription,
    system_alert,
    ticket,
    token_transaction,
    user as user_model,
    verification_token,
)

logger = logging.getLogger(__name__)

HTTP_ERROR_NAMES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
}


def _error_body(error: str, message: str, extra: Optional[dict] = None) -> dict:
    body = {"error": error, "message": message}
    if extra:
        body.update(extra)
    return body


def _validation_message(error: dict) -> str:
    # Pydantic prefixes messages raised from validators with "Value error, "
    message = error.get("msg", "Invalid request")
    return message.removeprefix("Value error, ")


def register_exception_handlers(app: FastAPI):
    """Render every error as {"error": ..., "message": ...}"""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.error, exc.message, exc.extra))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        error = HTTP_ERROR_NAMES.get(exc.status_code, "Error")
        message = exc.detail if isinstance(exc.detail, str) else error
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(error, message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        fields = [
            {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": _validation_message(err)}
            for err in errors
        ]
        message = fields[0]["message"] if fields else "Invalid request"
        return JSONResponse(status_code=400, content=_error_body("Bad Request", message, {"errors": fields}))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        # Full detail goes to the log only
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content=_error_body("Internal Server Error", "An unexpected error occurred"),
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    The database engine and session factory belong to the app: they are
    created when the app starts, kept on app.state and disposed on shutdown.
    """
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage app lifecycle events.

        Startup: Create the engine and tables, start the background scheduler
        Shutdown: Stop the scheduler, dispose the engine
        """
        engine = create_db_engine(settings.DATABASE_URL)
        # In production, use migrations (Alembic) instead of create_all
        Base.metadata.create_all(bind=engine)
        app.state.engine = engine
        app.state.session_factory = create_session_factory(engine)
        scheduler = start_scheduler(app.state.session_factory, settings)
        yield
        stop_scheduler(scheduler)
        engine.dispose()

    app = FastAPI(
        title="Cadogy API",
        description="Authentication, customer dashboard and admin API for Cadogy",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.email_service = build_email_service(settings)
    app.state.captcha_verifier = build_captcha_verifier(settings)
    app.state.payment_gateway = build_payment_gateway(settings)

    register_exception_handlers(app)

    # Route guard runs inside CORS so preflight requests are answered first
    app.add_middleware(RouteGuardMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,  # Session cookie
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # All routes are prefixed with /api for consistency
    app.include_router(auth.router, prefix="/api")
    app.include_router(dashboard.router, prefix="/api")
    app.include_router(user.router, prefix="/api")
    app.include_router(settings_routes.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")
    app.include_router(payments.router, prefix="/api")
    app.include_router(payments.webhook_router, prefix="/api")
    app.include_router(public.router, prefix="/api")
    app.include_router(public.protected_router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint - API information"""
        return {"message": "Cadogy API", "version": "1.0.0"}

    @app.get("/health")
    async def health():
        """Health check endpoint - used by monitoring/deployment tools"""
        return {"status": "healthy"}

    return app


app = create_app()
