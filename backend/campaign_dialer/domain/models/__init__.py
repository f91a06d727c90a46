"""Domain models"""

from .organization import (
    CallingWindow,
    Organization,
)

from .campaign import (
    CampaignStatus,
    Campaign,
)

from .lead import (
    LeadStatus,
    Lead,
)

from .call import (
    CallStatus,
    CallOutcome,
    Call,
)

from .credit import (
    VoiceTier,
    LedgerReason,
    CreditLedgerEntry,
    LedgerApplication,
    calculate_call_credits,
)

from .phone_number import (
    PhoneNumberStatus,
    PhoneNumber,
)

from .provider_event import (
    ProviderEventType,
    ProviderEvent,
)

__all__ = [
    "CallingWindow",
    "Organization",
    "CampaignStatus",
    "Campaign",
    "LeadStatus",
    "Lead",
    "CallStatus",
    "CallOutcome",
    "Call",
    "VoiceTier",
    "LedgerReason",
    "CreditLedgerEntry",
    "LedgerApplication",
    "calculate_call_credits",
    "PhoneNumberStatus",
    "PhoneNumber",
    "ProviderEventType",
    "ProviderEvent",
]
