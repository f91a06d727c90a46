"""
Credit Domain Models
Voice tiers, ledger entries and per-call credit calculation
"""
import math
from pydantic import BaseModel, Field
from typing import Dict, Optional
from datetime import datetime
from enum import Enum


class VoiceTier(str, Enum):
    """Pricing/quality class of an assistant configuration"""
    BUDGET = "budget"
    STANDARD = "standard"
    PREMIUM = "premium"
    ULTRA = "ultra"


# Fallback credits-per-minute when the credit_rates table has no row
DEFAULT_CREDITS_PER_MINUTE: Dict[VoiceTier, int] = {
    VoiceTier.BUDGET: 18,
    VoiceTier.STANDARD: 30,
    VoiceTier.PREMIUM: 35,
    VoiceTier.ULTRA: 40,
}


def voice_action_type(tier: VoiceTier) -> str:
    """Key of a voice tier in the credit_rates table."""
    return f"voice_{VoiceTier(tier).value}"


def calculate_call_credits(duration_seconds: int, credits_per_minute: int) -> int:
    """Credits for a call: ceil(minutes x rate)."""
    if duration_seconds <= 0 or credits_per_minute <= 0:
        return 0
    # Integer math so 90s at 30/min is exactly 45
    return math.ceil(duration_seconds * credits_per_minute / 60)


class LedgerReason(str, Enum):
    """Why a ledger entry exists"""
    RESERVATION = "reservation"
    SETTLEMENT = "settlement"
    REFUND = "refund"
    TOPUP = "topup"


class CreditLedgerEntry(BaseModel):
    """Immutable credit movement for an organization"""
    id: str
    organization_id: str
    delta: int = Field(..., description="Signed credit change actually applied")
    reason: LedgerReason
    reference_id: str
    description: Optional[str] = None
    balance_after: int = Field(..., ge=0)
    created_at: datetime

    model_config = {"frozen": True}


class LedgerApplication(BaseModel):
    """Result of appending a ledger entry"""
    entry: CreditLedgerEntry
    requested_delta: int
    clamped: bool = False
    duplicate: bool = False
