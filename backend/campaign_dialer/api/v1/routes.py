"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from campaign_dialer.api.v1.endpoints import health, webhooks

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(webhooks.router)
