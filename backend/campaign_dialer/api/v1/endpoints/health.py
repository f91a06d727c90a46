"""
Health Check Endpoint
"""
from fastapi import APIRouter, status
from typing import Dict

from campaign_dialer.utils.clock import utc_now

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> Dict[str, str]:
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "service": "campaign-dialer"
    }
