"""HTTP adapter. Authentication happens upstream; this app only maps the core onto HTTP."""

from fastapi import FastAPI

from iam_core.api.errors import register_exception_handlers
from iam_core.api.middleware import CorrelationIdMiddleware
from iam_core.api.routers import access, health
from iam_core.bootstrap import IamServices


def create_app(services: IamServices, lifespan=None) -> FastAPI:
    app = FastAPI(
        title=services.settings.app_name,
        version=services.settings.version,
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(app)
    app.include_router(health.router)
    app.include_router(access.router)
    return app
