"""Request/response helpers shared by the route modules."""
from __future__ import annotations

import json
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlsplit

from fastapi import Request, status
from fastapi.responses import RedirectResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

OVERRIDABLE_METHODS = {"PUT", "PATCH", "DELETE"}
SESSION_STATUS_KEY = "status"

STATUS_MESSAGES = {
    "profile-updated": "Profile updated.",
    "password-updated": "Password updated.",
    "verification-link-sent": "A new verification link has been sent to your email address.",
    "two-factor-authentication-enabled": "Two-factor authentication enabled. Finish setup by confirming a code.",
    "two-factor-authentication-confirmed": "Two-factor authentication confirmed.",
    "two-factor-authentication-disabled": "Two-factor authentication disabled.",
    "recovery-codes-generated": "New recovery codes generated.",
}


def redirect(url: object) -> RedirectResponse:
    """Redirect with ``303 See Other`` so browsers always follow with GET."""

    return RedirectResponse(str(url), status_code=status.HTTP_303_SEE_OTHER)


def flash_status(request: Request, message: str) -> None:
    request.session[SESSION_STATUS_KEY] = message


def status_message(value: Optional[str]) -> str:
    """Human readable text for a flashed status slug; other text passes through."""

    if not value:
        return ""
    return STATUS_MESSAGES.get(value, value)


def is_inertia(request: Request) -> bool:
    return request.headers.get("x-inertia", "").lower() == "true"


def wants_json(request: Request) -> bool:
    if is_inertia(request):
        return False
    accept = request.headers.get("accept", "")
    return "application/json" in accept or request.headers.get("x-requested-with") == "XMLHttpRequest"


def previous_url(request: Request, fallback: str) -> str:
    """Return the same-origin referer, or ``fallback``."""

    referer = request.headers.get("referer")
    if referer:
        parts = urlsplit(referer)
        if not parts.netloc or parts.netloc == request.url.netloc:
            return referer
    return fallback


async def read_input(request: Request) -> Dict[str, Any]:
    """Collect submitted fields from a JSON or form-encoded body."""

    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        body = await request.body()
        if not body:
            return {}
        try:
            payload = json.loads(body)
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    form = await request.form()
    return {key: value for key, value in form.items() if key != "_method"}


class MethodOverrideMiddleware:
    """Honour ``_method`` on form-encoded POSTs so HTML forms can PATCH/PUT/DELETE."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] != "POST":
            await self.app(scope, receive, send)
            return

        headers = {key.lower(): value for key, value in scope.get("headers", [])}
        content_type = headers.get(b"content-type", b"").decode("latin-1")
        if not content_type.startswith("application/x-www-form-urlencoded"):
            await self.app(scope, receive, send)
            return

        chunks = []
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] != "http.request":
                await self.app(scope, _replay([message], receive), send)
                return
            chunks.append(message.get("body", b""))
            more_body = message.get("more_body", False)
        body = b"".join(chunks)

        override = _extract_method(body)
        if override in OVERRIDABLE_METHODS:
            scope = dict(scope)
            scope["method"] = override

        await self.app(scope, _replay([{"type": "http.request", "body": body, "more_body": False}], receive), send)


def _extract_method(body: bytes) -> Optional[str]:
    try:
        fields = parse_qs(body.decode("utf-8"), keep_blank_values=True)
    except UnicodeDecodeError:
        return None
    values = fields.get("_method")
    if not values:
        return None
    return values[0].strip().upper()


def _replay(messages: list[Message], receive: Receive) -> Receive:
    pending = list(messages)

    async def replay() -> Message:
        if pending:
            return pending.pop(0)
        return await receive()

    return replay


__all__ = [
    "MethodOverrideMiddleware",
    "SESSION_STATUS_KEY",
    "STATUS_MESSAGES",
    "flash_status",
    "is_inertia",
    "previous_url",
    "read_input",
    "redirect",
    "status_message",
    "wants_json",
]
