"""
Route guard.

Every request is classified by path before it reaches a router, and the
class decides what credential is required:

- public pages, static assets and docs pass through
- /api/auth, /api/public and /api/webhooks pass through
- dashboard, user, settings, payments and admin APIs need a session (JSON 401/403)
- any other /api path needs an API key (JSON 401)
- dashboard, profile, settings and admin pages need a session (redirect to /login)
- anything else passes through
"""
import enum
import logging
import time
from typing import Optional
from urllib.parse import urlencode
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from cadogy.api.dependencies import read_session
from cadogy.core.config import Settings
from cadogy.models.user import ROLE_ADMIN
from cadogy.services.api_key_service import api_key_service
from cadogy.services.usage_service import usage_service

logger = logging.getLogger(__name__)

PUBLIC_PAGES = ("/login", "/register", "/verify-email", "/reset-password", "/forgot-password")
DOCS_PATHS = ("/docs", "/redoc", "/openapi.json")
STATIC_PREFIXES = ("/_next/", "/static/")
PUBLIC_API_PREFIXES = ("/api/auth/", "/api/public/", "/api/webhooks/")
SESSION_API_PREFIXES = ("/api/dashboard/", "/api/user/", "/api/settings/", "/api/payments/", "/api/admin/")
PROTECTED_PAGES = ("/dashboard", "/profile", "/settings", "/admin")
LEGACY_REDIRECTS = {
    "/auth/verify-email": "/verify-email",
    "/auth/reset-password": "/reset-password",
}
ROBOTS_HEADER = "noindex, nofollow, noarchive"


class RouteClass(str, enum.Enum):
    LEGACY_REDIRECT = "legacy_redirect"
    PUBLIC = "public"
    PUBLIC_API = "public_api"
    SESSION_API = "session_api"
    API_KEY = "api_key"
    SESSION_PAGE = "session_page"
    DEFAULT = "default"


def _matches(path: str, base: str) -> bool:
    return path == base or path.startswith(f"{base}/")


def _with_prefix_root(path: str, prefixes: tuple) -> bool:
    # "/api/user" is treated like "/api/user/"
    return any(path.startswith(prefix) or path == prefix.rstrip("/") for prefix in prefixes)


def classify_path(path: str) -> RouteClass:
    """Classify a request path; the first matching rule wins"""
    if path in LEGACY_REDIRECTS:
        return RouteClass.LEGACY_REDIRECT

    if path.startswith("/api"):
        if _with_prefix_root(path, PUBLIC_API_PREFIXES):
            return RouteClass.PUBLIC_API
        if _with_prefix_root(path, SESSION_API_PREFIXES):
            return RouteClass.SESSION_API
        if _matches(path, "/api"):
            return RouteClass.API_KEY

    if path == "/" or any(_matches(path, page) for page in PUBLIC_PAGES):
        return RouteClass.PUBLIC
    if path.startswith(STATIC_PREFIXES) or "." in path:
        return RouteClass.PUBLIC
    if any(_matches(path, docs) for docs in DOCS_PATHS):
        return RouteClass.PUBLIC

    if any(_matches(path, page) for page in PROTECTED_PAGES):
        return RouteClass.SESSION_PAGE
    return RouteClass.DEFAULT


def is_trusted_host(host: str, trusted_hosts: list[str]) -> bool:
    # Substring match so "localhost:3000" and "app.cadogy.com:443" are accepted
    return any(trusted in host for trusted in trusted_hosts)


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


def _login_redirect(request: Request) -> RedirectResponse:
    query = urlencode({"callbackUrl": request.url.path})
    return RedirectResponse(url=f"/login?{query}", status_code=307)


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """Applies the route classification above to every request"""

    async def dispatch(self, request: Request, call_next) -> Response:
        settings: Settings = request.app.state.settings
        path = request.url.path

        if path.startswith("/api/auth"):
            host = request.headers.get("host", "")
            if not is_trusted_host(host, settings.get_trusted_hosts()):
                logger.warning(f"Refused {path} from untrusted host {host}")
                return _error(401, "Unauthorized", "Invalid host")

        response = await self._route(request, path, settings, call_next)

        if _matches(path, "/admin"):
            response.headers["X-Robots-Tag"] = ROBOTS_HEADER
        return response

    async def _route(self, request: Request, path: str, settings: Settings, call_next) -> Response:
        route_class = classify_path(path)

        if route_class is RouteClass.LEGACY_REDIRECT:
            target = LEGACY_REDIRECTS[path]
            token = request.query_params.get("token")
            if token:
                target = f"{target}?{urlencode({'token': token})}"
            return RedirectResponse(url=target, status_code=307)

        if route_class is RouteClass.SESSION_API:
            claims = read_session(request, settings)
            if claims is None:
                return _error(401, "Unauthorized", "You must be signed in to access this API endpoint")
            if _with_prefix_root(path, ("/api/admin/",)) and claims.get("role") != ROLE_ADMIN:
                return _error(403, "Forbidden", "You do not have permission to access this resource")
            return await call_next(request)

        if route_class is RouteClass.API_KEY:
            return await self._api_key_request(request, path, settings, call_next)

        if route_class is RouteClass.SESSION_PAGE:
            claims = read_session(request, settings)
            if claims is None:
                return _login_redirect(request)
            if _matches(path, "/admin") and claims.get("role") != ROLE_ADMIN:
                return _login_redirect(request)
            return await call_next(request)

        return await call_next(request)

    async def _api_key_request(self, request: Request, path: str, settings: Settings, call_next) -> Response:
        key = request.headers.get("x-api-key") or request.query_params.get("api_key")
        if not key:
            return _error(401, "Unauthorized", "Valid API key required")

        # Static service keys are checked first and are not tied to a user
        if key in settings.get_valid_api_keys():
            return await call_next(request)

        # Key lookup and usage logging run in the threadpool
        session_factory = request.app.state.session_factory
        key_owner = await run_in_threadpool(self._lookup_key, session_factory, key)
        if key_owner is None:
            return _error(401, "Unauthorized", "Valid API key required")

        request.state.api_key_user_id, request.state.api_key_id = key_owner
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        await run_in_threadpool(self._log_usage, request, path, response.status_code, elapsed_ms, key_owner)
        return response

    @staticmethod
    def _lookup_key(session_factory: sessionmaker, key: str) -> Optional[tuple]:
        """(user_id, api_key_id) for an active per-user key, stamping its last use"""
        db = session_factory()
        try:
            api_key = api_key_service.verify_key(db, key)
            return (api_key.user_id, api_key.id) if api_key else None
        finally:
            db.close()

    @staticmethod
    def _log_usage(request: Request, path: str, status_code: int, elapsed_ms: int, key_owner: tuple) -> None:
        """Best effort: a failed usage write never changes the response"""
        user_id, api_key_id = key_owner
        client_ip: Optional[str] = request.headers.get("x-forwarded-for") or (
            request.client.host if request.client else None
        )
        db = request.app.state.session_factory()
        try:
            usage_service.log_request(
                db,
                user_id=user_id,
                api_key_id=api_key_id,
                endpoint=path,
                method=request.method,
                status_code=status_code,
                response_time_ms=elapsed_ms,
                ip_address=client_ip,
                user_agent=request.headers.get("user-agent"),
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Failed to log API usage for key {api_key_id}: {str(e)}")
        finally:
            db.close()
