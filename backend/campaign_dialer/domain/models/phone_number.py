"""
Phone Number Domain Models
Originating numbers with lazily-reset hourly/daily usage counters
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class PhoneNumberStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class PhoneNumber(BaseModel):
    """
    Outbound number owned by an organization.

    Counters belong to the UTC hour/day of `last_reset_at`. When the
    wall clock has moved past that hour or day they are read as zero;
    no background job ever resets them.
    """
    id: str
    organization_id: str
    number: str
    provider_phone_number_id: Optional[str] = Field(
        default=None,
        description="Voice provider's id for this number"
    )
    status: PhoneNumberStatus = PhoneNumberStatus.ACTIVE
    max_calls_per_hour: int = Field(default=60, ge=1)
    max_calls_per_day: int = Field(default=500, ge=1)
    current_hour_count: int = Field(default=0, ge=0)
    current_day_count: int = Field(default=0, ge=0)
    last_used_at: Optional[datetime] = None
    last_reset_at: Optional[datetime] = None

    def effective_counts(self, now: datetime) -> tuple[int, int]:
        """(hour_count, day_count) as of `now`."""
        if self.last_reset_at is None:
            return 0, 0
        if now.date() != self.last_reset_at.date():
            return 0, 0
        hour_count = self.current_hour_count
        if now.replace(minute=0, second=0, microsecond=0) != self.last_reset_at.replace(
            minute=0, second=0, microsecond=0
        ):
            hour_count = 0
        return hour_count, self.current_day_count

    def is_eligible(self, now: datetime) -> bool:
        if self.status != PhoneNumberStatus.ACTIVE:
            return False
        hour_count, day_count = self.effective_counts(now)
        return hour_count < self.max_calls_per_hour and day_count < self.max_calls_per_day

    def with_usage(self, now: datetime) -> "PhoneNumber":
        """Copy with one more call counted in the current hour and day."""
        hour_count, day_count = self.effective_counts(now)
        return self.model_copy(update={
            "current_hour_count": hour_count + 1,
            "current_day_count": day_count + 1,
            "last_used_at": now,
            "last_reset_at": now,
        })

    def without_usage(self, now: datetime) -> "PhoneNumber":
        """Copy with one call given back (never below zero)."""
        hour_count, day_count = self.effective_counts(now)
        return self.model_copy(update={
            "current_hour_count": max(0, hour_count - 1),
            "current_day_count": max(0, day_count - 1),
            "last_reset_at": now,
        })
