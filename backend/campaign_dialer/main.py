"""
FastAPI Application Entry Point
Receives voice provider webhooks; the scheduler runs as its own worker process
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from campaign_dialer.api.v1.routes import api_router
from campaign_dialer.container import DialerContainer
from campaign_dialer.core.config import Settings, get_config_manager, get_settings

logger = logging.getLogger(__name__)


def create_app(
    container: Optional[DialerContainer] = None,
    settings: Optional[Settings] = None
) -> FastAPI:
    """
    Build the API app.

    Tests pass their own container; otherwise one is built from settings
    on startup. The API never places calls, so no voice provider is
    wired here.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Campaign Dialer API...")
        owns_container = False
        if getattr(app.state, "container", None) is None:
            config = get_config_manager().get_dialer_config()
            app.state.container = DialerContainer.from_settings(settings, config, with_provider=False)
            owns_container = True

        if not settings.vapi_webhook_secret:
            logger.warning("VAPI_WEBHOOK_SECRET not set - webhook signatures are not verified")

        yield

        logger.info("Shutting down Campaign Dialer API...")
        if owns_container:
            await app.state.container.close()

    app = FastAPI(
        title="Campaign Dialer",
        description="Campaign calling orchestrator with credit-metered admission control",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.container = container

    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
