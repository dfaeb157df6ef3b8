"""
Application factory and ASGI entrypoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gtm_map.api.v1.router import api_router
from gtm_map.core.config import settings
from gtm_map.core.exceptions import ConfigurationError, register_exception_handlers
from gtm_map.core.logging import setup_logging
from gtm_map.db.session import dispose_engine, get_session_factory
from gtm_map.repositories.plan_repo import PlanRepo
from gtm_map.services.limits import RequestLimiter
from gtm_map.services.openai_service import ProspectGenerator, build_openai_client
from gtm_map.services.plan_catalog import PlanCatalog
from gtm_map.services.stripe_gateway import StripeGateway
from gtm_map.store import build_store_factory


logger = logging.getLogger(__name__)


async def _sync_plans(catalog: PlanCatalog) -> None:
    async with get_session_factory()() as session:
        await PlanRepo(session).sync(plan.as_row() for plan in catalog.all())
        await session.commit()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build provider clients and the billing store once per process."""

    setup_logging()
    missing = settings.missing_required()
    if missing:
        raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    catalog = PlanCatalog.from_settings(settings)
    app.state.catalog = catalog
    app.state.store_factory = build_store_factory(settings)
    app.state.stripe_gateway = StripeGateway.from_settings(settings)
    app.state.prospect_generator = ProspectGenerator(
        build_openai_client(settings), settings.OPENAI_MODEL_DEFAULT
    )
    app.state.limiter = RequestLimiter.from_settings(settings)

    if settings.store.backend_type == "sql":
        await _sync_plans(catalog)
        logger.info(f"Synced {len(catalog.all())} plans to the database")

    logger.info(f"{settings.PROJECT_NAME} started ({settings.ENV})")
    try:
        yield
    finally:
        await app.state.limiter.close()
        await dispose_engine()
        logger.info("Shutdown complete")


def create_application() -> FastAPI:
    """Create the FastAPI application with routers and error handlers."""

    application = FastAPI(
        title=settings.PROJECT_NAME,
        docs_url=f"{settings.API_PREFIX}/docs",
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        lifespan=lifespan,
    )
    register_exception_handlers(application)
    application.include_router(api_router, prefix=f"{settings.API_PREFIX}/v1")
    return application


app = create_application()
