"""
Lead Domain Models
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Set, Tuple
from datetime import datetime
from enum import Enum


class LeadStatus(str, Enum):
    """call_status of a lead within its campaign"""
    PENDING = "pending"
    CALLING = "calling"
    COMPLETED = "completed"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


# calling -> pending is the dispatch rollback when the provider never accepted the call
ALLOWED_TRANSITIONS: Set[Tuple[LeadStatus, LeadStatus]] = {
    (LeadStatus.PENDING, LeadStatus.CALLING),
    (LeadStatus.CALLING, LeadStatus.COMPLETED),
    (LeadStatus.CALLING, LeadStatus.FAILED),
    (LeadStatus.CALLING, LeadStatus.PENDING),
    (LeadStatus.FAILED, LeadStatus.PENDING),
    (LeadStatus.FAILED, LeadStatus.EXHAUSTED),
}


class Lead(BaseModel):
    """Contact to be called within a campaign"""
    id: str
    campaign_id: str
    organization_id: str
    phone_number: str = Field(..., description="Destination number (E.164)")
    name: Optional[str] = None
    call_status: LeadStatus = LeadStatus.PENDING
    attempt_count: int = Field(default=1, ge=1, description="Current attempt (1-based)")
    last_attempted_at: Optional[datetime] = None
    next_eligible_at: Optional[datetime] = None
    custom_fields: Dict[str, Any] = {}
    is_duplicate: bool = False
    original_lead_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def is_eligible(self, now: datetime) -> bool:
        """Pending and past its backoff."""
        if self.call_status != LeadStatus.PENDING:
            return False
        return self.next_eligible_at is None or self.next_eligible_at <= now
