"""
Call Domain Models
"""
from pydantic import BaseModel
from typing import Optional, Set
from datetime import datetime
from enum import Enum


class CallStatus(str, Enum):
    """Call status"""
    INITIATING = "initiating"    # Row exists, provider call not yet created
    INITIATED = "initiated"      # Provider accepted the request
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class CallOutcome(str, Enum):
    """Outcome classification of a call attempt"""
    ANSWERED = "answered"
    VOICEMAIL = "voicemail"
    NOT_INTERESTED = "not_interested"
    GOAL_ACHIEVED = "goal_achieved"
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    FAILED = "failed"
    INVALID_NUMBER = "invalid_number"
    REJECTED = "rejected"


ACTIVE_CALL_STATUSES: Set[CallStatus] = {
    CallStatus.INITIATING,
    CallStatus.INITIATED,
    CallStatus.IN_PROGRESS,
}

TERMINAL_CALL_STATUSES: Set[CallStatus] = {CallStatus.COMPLETED, CallStatus.FAILED}

# Lead is done with: calling -> completed
CONCLUSIVE_OUTCOMES: Set[CallOutcome] = {
    CallOutcome.ANSWERED,
    CallOutcome.VOICEMAIL,
    CallOutcome.NOT_INTERESTED,
    CallOutcome.GOAL_ACHIEVED,
}

# Never retry: calling -> failed -> exhausted
# Any other inconclusive outcome is retried
NON_RETRYABLE_OUTCOMES: Set[CallOutcome] = {
    CallOutcome.INVALID_NUMBER,
    CallOutcome.REJECTED,
}


class Call(BaseModel):
    """One placed call attempt"""
    id: str
    lead_id: str
    campaign_id: str
    organization_id: str
    phone_number_id: Optional[str] = None
    to_number: Optional[str] = None
    provider_call_id: Optional[str] = None
    status: CallStatus = CallStatus.INITIATING
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    cost_credits: Optional[int] = None
    outcome: Optional[CallOutcome] = None
    ended_reason: Optional[str] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_CALL_STATUSES
