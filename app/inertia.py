"""Server-driven page rendering.

Every page is identified by a component name (``settings/profile``) and a
dictionary of props. Requests sent by the client-side router carry an
``X-Inertia: true`` header and receive the page object as JSON; every other
request receives the Jinja2 template for the component, with the same page
object embedded in the root element so a client bundle can take over.
"""
from __future__ import annotations

import json
from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.types import ASGIApp, Receive, Scope, Send

from .http import is_inertia

SharedProps = Callable[[Request], Mapping[str, Any]]


def _resolve(value: Any) -> Any:
    return value() if callable(value) else value


class Inertia:
    """Render page objects as JSON or as HTML templates."""

    def __init__(
        self,
        templates: Jinja2Templates,
        *,
        version: str,
        shared: Optional[SharedProps] = None,
    ) -> None:
        self._templates = templates
        self._version = version
        self._shared = shared

    @property
    def version(self) -> str:
        return self._version

    def page(self, request: Request, component: str, props: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        if self._shared is not None:
            merged.update(self._shared(request))
        merged.update(props or {})

        only = self._partial_keys(request, component)
        if only is not None:
            merged = {key: value for key, value in merged.items() if key in only or key == "errors"}

        return {
            "component": component,
            "props": {key: _resolve(value) for key, value in merged.items()},
            "url": request.url.path + (f"?{request.url.query}" if request.url.query else ""),
            "version": self._version,
        }

    def render(
        self,
        request: Request,
        component: str,
        props: Optional[Mapping[str, Any]] = None,
        *,
        status_code: int = status.HTTP_200_OK,
    ) -> Response:
        page = self.page(request, component, props)
        if is_inertia(request):
            return JSONResponse(
                page,
                status_code=status_code,
                headers={"X-Inertia": "true", "Vary": "X-Inertia"},
            )

        context = dict(page["props"])
        context.update(
            {
                "request": request,
                "page": page,
                "page_json": json.dumps(page, separators=(",", ":")),
            }
        )
        response = self._templates.TemplateResponse(
            request,
            f"{component}.html",
            context,
            status_code=status_code,
        )
        response.headers["Vary"] = "X-Inertia"
        return response

    @staticmethod
    def _partial_keys(request: Request, component: str) -> Optional[set[str]]:
        if not is_inertia(request):
            return None
        if request.headers.get("x-inertia-partial-component") != component:
            return None
        raw = request.headers.get("x-inertia-partial-data", "")
        keys = {item.strip() for item in raw.split(",") if item.strip()}
        return keys or None


class InertiaVersionMiddleware:
    """Reject requests from stale client bundles.

    A GET request from a client running a different (or unstated) asset version receives
    ``409 Conflict`` with ``X-Inertia-Location`` so it performs a full reload.
    """

    def __init__(self, app: ASGIApp, *, version: str) -> None:
        self.app = app
        self.version = version

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = {key.lower(): value for key, value in scope.get("headers", [])}
        inertia = headers.get(b"x-inertia", b"").lower() == b"true"
        if inertia and scope["method"] == "GET":
            client_version = headers.get(b"x-inertia-version", b"").decode("latin-1")
            if client_version != self.version:
                request = Request(scope)
                response = Response(
                    status_code=status.HTTP_409_CONFLICT,
                    headers={"X-Inertia-Location": str(request.url)},
                )
                await response(scope, receive, send)
                return

        await self.app(scope, receive, send)


__all__ = ["Inertia", "InertiaVersionMiddleware"]
