"""Application factory wiring configuration, storage and the route modules together."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .account import APPEARANCE_COOKIE_NAME, register_account_routes
from .auth import register_auth_routes
from .config import Settings
from .database import Database, resolve_database_path
from .exceptions import SESSION_ERRORS_KEY, SESSION_OLD_INPUT_KEY, register_exception_handlers
from .guards import current_user
from .http import SESSION_STATUS_KEY, MethodOverrideMiddleware, status_message
from .inertia import Inertia, InertiaVersionMiddleware
from .mail import Mailer, create_mailer
from .pages import register_page_routes
from .security import URLSigner
from .throttle import RateLimiter
from .two_factor import TwoFactorProvider

logger = logging.getLogger("starter.application")

BASE_DIR = Path(__file__).resolve().parent
TEMPLATE_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

SESSION_COOKIE_NAME = "starter_session"
SESSION_MAX_AGE = 60 * 60 * 24 * 7
SIDEBAR_COOKIE_NAME = "sidebar_state"
APPEARANCES = {"light", "dark", "system"}


def _trusted_proxy_hosts(settings: Settings) -> List[str] | str:
    return settings.trusted_proxies or "127.0.0.1"


def _shared_props(settings: Settings):
    """Props merged into every rendered page."""

    def shared(request: Request) -> Dict[str, Any]:
        user = current_user(request)
        appearance = request.cookies.get(APPEARANCE_COOKIE_NAME, "system")
        return {
            "name": settings.app_name,
            "auth": {"user": user.to_props() if user else None},
            "errors": request.session.pop(SESSION_ERRORS_KEY, None) or {},
            "old": request.session.pop(SESSION_OLD_INPUT_KEY, None) or {},
            "status": request.session.pop(SESSION_STATUS_KEY, None),
            "appearance": appearance if appearance in APPEARANCES else "system",
            "sidebarOpen": request.cookies.get(SIDEBAR_COOKIE_NAME, "true") != "false",
        }

    return shared


def create_application(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    """Create the web application.

    ``database`` and ``mailer`` may be injected, which the test-suite uses to
    point the app at a temporary database and an in-memory outbox.
    """

    settings = settings or Settings.from_env()
    if not settings.session_secret:
        raise RuntimeError("STARTER_SESSION_SECRET must be configured to run the application")

    if database is None:
        db_path = settings.database_path or resolve_database_path(None)
        database = Database(db_path, encryption_secret=settings.session_secret)
    database.initialize()

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.filters["status_message"] = status_message
    inertia = Inertia(templates, version=settings.asset_version, shared=_shared_props(settings))

    app = FastAPI(
        title=settings.app_name,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.mailer = mailer or create_mailer(settings.mail)
    app.state.limiter = RateLimiter()
    app.state.two_factor = TwoFactorProvider(settings.issuer)
    app.state.signer = URLSigner(settings.session_secret)
    app.state.inertia = inertia

    register_exception_handlers(app)
    register_page_routes(app)
    register_auth_routes(app)
    register_account_routes(app)

    if STATIC_DIR.is_dir():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    # Starlette wraps in reverse order: the proxy headers are applied first.
    app.add_middleware(InertiaVersionMiddleware, version=settings.asset_version)
    app.add_middleware(MethodOverrideMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=SESSION_COOKIE_NAME,
        https_only=settings.secure_cookies,
        same_site="lax",
        max_age=SESSION_MAX_AGE,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts(settings))

    logger.info("Application %r ready (database: %s)", settings.app_name, database.path)
    return app


__all__ = ["create_application"]
