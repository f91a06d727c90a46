"""
Webhooks API Endpoints
Handles call events from the voice provider
"""
import json
import logging

from fastapi import APIRouter, Request, HTTPException, Depends, status

from campaign_dialer.api.v1.dependencies import get_container, get_app_settings
from campaign_dialer.container import DialerContainer
from campaign_dialer.core.config import Settings
from campaign_dialer.core.exceptions import WebhookAuthenticationError
from campaign_dialer.core.security import verify_timestamp, verify_webhook_signature
from campaign_dialer.domain.models.provider_event import ProviderEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "x-vapi-signature"


@router.post("/voice")
async def voice_webhook(
    request: Request,
    container: DialerContainer = Depends(get_container),
    settings: Settings = Depends(get_app_settings)
):
    """
    Handle a voice provider call event.

    The signature covers the raw body, so it is checked before parsing.
    Unknown calls, duplicates and event types we do not track are
    acknowledged with 200 so the provider does not redeliver them.
    """
    body = await request.body()

    if settings.vapi_webhook_secret:
        try:
            verify_webhook_signature(body, request.headers.get(SIGNATURE_HEADER), settings.vapi_webhook_secret)
        except WebhookAuthenticationError as e:
            logger.warning(f"Rejected voice webhook: {e.message}")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expected a JSON object")

    event = ProviderEvent.from_webhook_payload(payload)
    if event is None:
        logger.debug("Voice webhook without a call id - ignoring")
        return {"status": "ignored", "reason": "no_call_id"}

    try:
        verify_timestamp(event.timestamp, container.config.webhook_max_skew_seconds, now=container.clock())
    except WebhookAuthenticationError as e:
        logger.warning(f"Rejected voice webhook for {event.provider_call_id}: {e.message}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)

    result = await container.reconciler.on_provider_event(event)

    return {
        "status": "processed" if result.handled else "ignored",
        "reason": result.reason,
        "call_id": result.call_id,
        "outcome": result.outcome.value if result.outcome else None,
        "credits_charged": result.credits_charged,
    }
