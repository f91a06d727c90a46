"""
Orchestrator Repository Interface
Data access for organizations, campaigns, leads, calls, numbers and the credit ledger

Every method that changes state is a single-row conditional update: it
either applies completely or reports that the row no longer matched.
Callers never hold a lock across calls.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime

from campaign_dialer.domain.models.organization import Organization
from campaign_dialer.domain.models.campaign import Campaign, CampaignStatus
from campaign_dialer.domain.models.lead import Lead, LeadStatus
from campaign_dialer.domain.models.call import Call, CallStatus
from campaign_dialer.domain.models.credit import (
    CreditLedgerEntry,
    LedgerApplication,
    LedgerReason,
)
from campaign_dialer.domain.models.phone_number import PhoneNumber


class OrchestratorRepository(ABC):
    """Abstract data access used by every orchestrator service"""

    # ------------------------------------------------------------------
    # Organizations & credits
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        pass

    @abstractmethod
    async def save_organization(self, organization: Organization) -> Organization:
        pass

    @abstractmethod
    async def set_organization_suspended(
        self,
        organization_id: str,
        suspended: bool,
        reason: Optional[str] = None
    ) -> None:
        pass

    @abstractmethod
    async def apply_ledger_entry(
        self,
        organization_id: str,
        delta: int,
        reason: LedgerReason,
        reference_id: str,
        description: Optional[str] = None
    ) -> LedgerApplication:
        """
        Append a ledger entry and move the balance in one step.

        Negative deltas are clamped so the balance stops at zero. An entry
        that already exists for (organization_id, reference_id, reason) is
        returned unchanged with duplicate=True.
        """
        pass

    @abstractmethod
    async def list_ledger_entries(self, organization_id: str) -> List[CreditLedgerEntry]:
        pass

    @abstractmethod
    async def get_credit_rate(self, action_type: str) -> Optional[int]:
        """Credits per unit for an action type (e.g. 'voice_standard')."""
        pass

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        pass

    @abstractmethod
    async def save_campaign(self, campaign: Campaign) -> Campaign:
        pass

    @abstractmethod
    async def list_campaigns(self, status: Optional[CampaignStatus] = None) -> List[Campaign]:
        pass

    @abstractmethod
    async def transition_campaign_status(
        self,
        campaign_id: str,
        from_status: CampaignStatus,
        to_status: CampaignStatus,
        changes: Optional[Dict[str, Any]] = None
    ) -> bool:
        pass

    @abstractmethod
    async def increment_campaign_counter(self, campaign_id: str, counter: str) -> None:
        pass

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_lead(self, lead_id: str) -> Optional[Lead]:
        pass

    @abstractmethod
    async def add_lead(self, lead: Lead) -> Lead:
        pass

    @abstractmethod
    async def find_leads_by_phone(self, organization_id: str, phone_number: str) -> List[Lead]:
        pass

    @abstractmethod
    async def list_eligible_leads(self, campaign_id: str, now: datetime, limit: int) -> List[Lead]:
        """
        Pending leads whose next_eligible_at is unset or <= now,
        never-attempted first, then oldest last_attempted_at.
        """
        pass

    @abstractmethod
    async def count_leads(self, campaign_id: str, statuses: Iterable[LeadStatus]) -> int:
        pass

    @abstractmethod
    async def transition_lead(
        self,
        lead_id: str,
        from_status: LeadStatus,
        to_status: LeadStatus,
        changes: Optional[Dict[str, Any]] = None
    ) -> Optional[Lead]:
        """
        SET call_status=to_status (+changes) WHERE id=lead_id AND call_status=from_status.

        Returns the updated lead, or None if the row did not match.
        """
        pass

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_call(self, call: Call) -> Call:
        pass

    @abstractmethod
    async def get_call(self, call_id: str) -> Optional[Call]:
        pass

    @abstractmethod
    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        pass

    @abstractmethod
    async def update_call(
        self,
        call_id: str,
        expected_statuses: Iterable[CallStatus],
        changes: Dict[str, Any]
    ) -> Optional[Call]:
        """Update a call only while its status is one of expected_statuses."""
        pass

    @abstractmethod
    async def count_active_calls(self, campaign_id: str) -> int:
        pass

    @abstractmethod
    async def count_calls_since(self, organization_id: str, since: datetime) -> int:
        pass

    @abstractmethod
    async def list_stale_calls(
        self,
        statuses: Iterable[CallStatus],
        created_before: datetime
    ) -> List[Call]:
        pass

    # ------------------------------------------------------------------
    # Phone numbers
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_phone_number(self, phone_number_id: str) -> Optional[PhoneNumber]:
        pass

    @abstractmethod
    async def save_phone_number(self, phone_number: PhoneNumber) -> PhoneNumber:
        pass

    @abstractmethod
    async def list_phone_numbers(self, organization_id: str) -> List[PhoneNumber]:
        pass

    @abstractmethod
    async def compare_and_set_phone_usage(
        self,
        observed: PhoneNumber,
        updated: PhoneNumber
    ) -> bool:
        """
        Write updated's counters/timestamps only if the stored row still
        has observed's counters and last_used_at.
        """
        pass

    @abstractmethod
    async def release_phone_usage(self, phone_number_id: str, now: datetime) -> None:
        pass

    # ------------------------------------------------------------------
    # Webhook idempotency
    # ------------------------------------------------------------------

    @abstractmethod
    async def is_event_processed(self, provider_call_id: str, event_type: str) -> bool:
        pass

    @abstractmethod
    async def record_processed_event(self, provider_call_id: str, event_type: str) -> bool:
        """
        Mark a (provider_call_id, event_type) pair as fully applied.

        Returns True the first time the pair is recorded.
        """
        pass
