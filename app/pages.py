"""Public landing page and the authenticated dashboard."""
from __future__ import annotations

from fastapi import APIRouter, Depends, FastAPI, Request

from .guards import require_verified


def register_page_routes(app: FastAPI) -> None:
    router = APIRouter(include_in_schema=False)

    @router.get("/", name="home")
    async def welcome(request: Request):
        settings = request.app.state.settings
        return request.app.state.inertia.render(
            request,
            "welcome",
            {"canRegister": settings.registration_enabled},
        )

    @router.get("/dashboard", name="dashboard", dependencies=[Depends(require_verified)])
    async def dashboard(request: Request):
        return request.app.state.inertia.render(request, "dashboard")

    app.include_router(router)


__all__ = ["register_page_routes"]
