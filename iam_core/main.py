# iam_core/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from iam_core.api.app import create_app
from iam_core.bootstrap import build_services, build_sql_services
from iam_core.config.logging import configure_logging
from iam_core.config.settings import get_settings
from iam_core.infrastructure.database.session import (
    create_engine,
    create_session_factory,
    init_models,
)

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.log_level)

engine = create_engine(settings) if settings.database_url else None
if engine is not None:
    services = build_sql_services(create_session_factory(engine), settings)
else:
    services = build_services(settings)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if engine is not None:
        await init_models(engine)
    seeded = await services.roles.seed_system_roles()
    logger.info(
        "iam_core_started",
        extra={"environment": settings.environment, "sql_store": engine is not None, "seeded_roles": len(seeded)},
    )
    yield
    if engine is not None:
        await engine.dispose()


app = create_app(services, lifespan=lifespan)
