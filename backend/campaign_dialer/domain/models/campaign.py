"""
Campaign Domain Models
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum

from campaign_dialer.domain.models.credit import VoiceTier


class CampaignStatus(str, Enum):
    """Campaign status"""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class Campaign(BaseModel):
    """Campaign for outbound calls"""
    id: str
    organization_id: str
    name: str = ""
    status: CampaignStatus = CampaignStatus.DRAFT

    # Voice provider references
    assistant_id: str = Field(..., description="Provider assistant reference")
    voice_tier: VoiceTier = VoiceTier.STANDARD
    phone_number_id: Optional[str] = Field(
        default=None,
        description="Pin every call to this number instead of drawing from the pool"
    )

    # Retry policy
    max_attempts: int = Field(default=3, ge=1)
    backoff_interval_seconds: int = Field(default=7200, ge=0)

    # Lead import
    allow_duplicate_leads: bool = Field(
        default=False,
        description="Create a duplicate lead instead of moving one that exists in another campaign"
    )

    # Campaign-level alert (e.g., provider rejected the assistant reference)
    last_error: Optional[str] = None

    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    calls_completed: int = 0
    calls_failed: int = 0
    leads_exhausted: int = 0
