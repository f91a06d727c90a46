"""
Voice Provider Event Model
Normalized webhook event from the voice provider
"""
from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

from campaign_dialer.utils.clock import parse_timestamp


class ProviderEventType(str, Enum):
    CALL_STARTED = "call-started"
    CALL_ENDED = "call-ended"
    OTHER = "other"


# Provider message types -> our event types
_MESSAGE_TYPE_MAP = {
    "call-started": ProviderEventType.CALL_STARTED,
    "call-ended": ProviderEventType.CALL_ENDED,
    "end-of-call-report": ProviderEventType.CALL_ENDED,
}

# status-update messages carry the call status instead of a dedicated type
_STATUS_UPDATE_MAP = {
    "in-progress": ProviderEventType.CALL_STARTED,
}


class ProviderEvent(BaseModel):
    """
    Inbound call event.

    `correlation_call_id` is our own Call id, echoed back from the
    metadata sent with the create-call request.
    """
    provider_call_id: str
    event_type: ProviderEventType
    correlation_call_id: Optional[str] = None
    duration_seconds: Optional[int] = None
    ended_reason: Optional[str] = None
    outcome: Optional[str] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    timestamp: Optional[datetime] = None

    @classmethod
    def from_webhook_payload(cls, payload: Dict[str, Any]) -> Optional["ProviderEvent"]:
        """
        Build an event from a provider webhook body.

        Accepts the provider's {"message": {...}} envelope or a bare
        message. Returns None when the payload has no call id.
        """
        message = payload.get("message", payload) or {}
        call = message.get("call") or {}

        provider_call_id = call.get("id") or message.get("callId") or message.get("call_id")
        if not provider_call_id:
            return None

        message_type = message.get("type", "")
        event_type = _MESSAGE_TYPE_MAP.get(message_type)
        if event_type is None and message_type == "status-update":
            event_type = _STATUS_UPDATE_MAP.get(message.get("status", ""))
        if event_type is None:
            event_type = ProviderEventType.OTHER

        metadata = (
            call.get("metadata")
            or (call.get("assistantOverrides") or {}).get("metadata")
            or (call.get("assistant") or {}).get("metadata")
            or message.get("metadata")
            or {}
        )
        correlation_call_id = metadata.get("call_id") or metadata.get("callId")

        started_at = parse_timestamp(message.get("startedAt") or call.get("startedAt"))
        ended_at = parse_timestamp(message.get("endedAt") or call.get("endedAt"))

        duration = message.get("durationSeconds", call.get("durationSeconds"))
        if duration is None and started_at and ended_at:
            duration = (ended_at - started_at).total_seconds()

        analysis = message.get("analysis") or {}
        artifact = message.get("artifact") or {}

        return cls(
            provider_call_id=str(provider_call_id),
            event_type=event_type,
            correlation_call_id=correlation_call_id,
            duration_seconds=int(round(float(duration))) if duration is not None else None,
            ended_reason=message.get("endedReason") or call.get("endedReason"),
            outcome=message.get("outcome") or analysis.get("outcome"),
            recording_url=(
                message.get("recordingUrl")
                or artifact.get("recordingUrl")
                or message.get("recording_url")
            ),
            transcript=message.get("transcript") or artifact.get("transcript"),
            summary=message.get("summary") or analysis.get("summary"),
            started_at=started_at,
            ended_at=ended_at,
            timestamp=parse_timestamp(message.get("timestamp")),
        )
