"""
API Dependencies
Shared dependencies for the orchestrator services and settings
"""
from fastapi import Request

from campaign_dialer.container import DialerContainer
from campaign_dialer.core.config import Settings


def get_container(request: Request) -> DialerContainer:
    """Service container created in the application lifespan."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise RuntimeError("Dialer services are not initialized")
    return container


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
