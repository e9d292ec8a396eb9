"""FastAPI application factories for the portal and the operator API."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from captivegate import __version__
from captivegate.gateway import Gateway
from captivegate.storage.db import get_db


def _lifespan(gateway: Gateway):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.db = await get_db(gateway.config.db_path)
        try:
            yield
        finally:
            await app.state.db.close()

    return lifespan


def create_portal_app(gateway: Gateway) -> FastAPI:
    """The app served to LAN clients on the gateway address."""
    app = FastAPI(
        title="captivegate portal",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=_lifespan(gateway),
    )
    app.state.gateway = gateway

    from captivegate.web.api.portal import router as portal_router

    app.include_router(portal_router)
    return app


def create_admin_app(gateway: Gateway) -> FastAPI:
    """The operator API. Only ever bound to the loopback address."""
    app = FastAPI(
        title="captivegate admin",
        version=__version__,
        docs_url="/api/docs",
        lifespan=_lifespan(gateway),
    )
    app.state.gateway = gateway

    from captivegate.web.api.grants import router as grants_router
    from captivegate.web.api.status import router as status_router

    app.include_router(grants_router, prefix="/api")
    app.include_router(status_router, prefix="/api")
    return app
