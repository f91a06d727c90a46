"""
In-Memory Orchestrator Repository
Single-process store for local runs and tests

None of the methods await between reading and writing a row, so each one
runs to completion inside the event loop and behaves like a conditional
UPDATE. Rows are copied on the way in and out so callers never share
mutable state with the store.
"""
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from datetime import datetime, timezone

from campaign_dialer.domain.interfaces.orchestrator_repository import OrchestratorRepository
from campaign_dialer.domain.models.organization import Organization
from campaign_dialer.domain.models.campaign import Campaign, CampaignStatus
from campaign_dialer.domain.models.lead import Lead, LeadStatus
from campaign_dialer.domain.models.call import Call, CallStatus, ACTIVE_CALL_STATUSES
from campaign_dialer.domain.models.credit import (
    CreditLedgerEntry,
    LedgerApplication,
    LedgerReason,
)
from campaign_dialer.domain.models.phone_number import PhoneNumber
from campaign_dialer.core.exceptions import NotFoundError
from campaign_dialer.utils.clock import utc_now

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryOrchestratorRepository(OrchestratorRepository):
    """Dictionary-backed repository"""

    def __init__(self, credit_rates: Optional[Dict[str, int]] = None):
        self._organizations: Dict[str, Organization] = {}
        self._campaigns: Dict[str, Campaign] = {}
        self._leads: Dict[str, Lead] = {}
        self._calls: Dict[str, Call] = {}
        self._phone_numbers: Dict[str, PhoneNumber] = {}
        self._ledger: Dict[str, List[CreditLedgerEntry]] = defaultdict(list)
        self._ledger_keys: Dict[Tuple[str, str, str], CreditLedgerEntry] = {}
        self._credit_rates: Dict[str, int] = dict(credit_rates or {})
        self._processed_events: Set[Tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # Organizations & credits
    # ------------------------------------------------------------------

    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        org = self._organizations.get(organization_id)
        return org.model_copy(deep=True) if org else None

    async def save_organization(self, organization: Organization) -> Organization:
        self._organizations[organization.id] = organization.model_copy(deep=True)
        return organization

    async def set_organization_suspended(
        self,
        organization_id: str,
        suspended: bool,
        reason: Optional[str] = None
    ) -> None:
        org = self._organizations.get(organization_id)
        if org is None:
            raise NotFoundError("Organization", organization_id)
        self._organizations[organization_id] = org.model_copy(update={
            "suspended": suspended,
            "suspension_reason": reason if suspended else None,
        })

    async def apply_ledger_entry(
        self,
        organization_id: str,
        delta: int,
        reason: LedgerReason,
        reference_id: str,
        description: Optional[str] = None
    ) -> LedgerApplication:
        org = self._organizations.get(organization_id)
        if org is None:
            raise NotFoundError("Organization", organization_id)

        key = (organization_id, reference_id, LedgerReason(reason).value)
        existing = self._ledger_keys.get(key)
        if existing is not None:
            return LedgerApplication(
                entry=existing,
                requested_delta=delta,
                clamped=existing.delta != delta,
                duplicate=True,
            )

        applied = delta
        if org.credit_balance + delta < 0:
            applied = -org.credit_balance
        balance_after = org.credit_balance + applied

        entry = CreditLedgerEntry(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            delta=applied,
            reason=reason,
            reference_id=reference_id,
            description=description,
            balance_after=balance_after,
            created_at=utc_now(),
        )
        self._organizations[organization_id] = org.model_copy(
            update={"credit_balance": balance_after}
        )
        self._ledger[organization_id].append(entry)
        self._ledger_keys[key] = entry

        return LedgerApplication(
            entry=entry,
            requested_delta=delta,
            clamped=applied != delta,
        )

    async def list_ledger_entries(self, organization_id: str) -> List[CreditLedgerEntry]:
        return list(self._ledger.get(organization_id, []))

    async def get_credit_rate(self, action_type: str) -> Optional[int]:
        return self._credit_rates.get(action_type)

    def set_credit_rate(self, action_type: str, credits: int) -> None:
        self._credit_rates[action_type] = credits

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        campaign = self._campaigns.get(campaign_id)
        return campaign.model_copy(deep=True) if campaign else None

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        self._campaigns[campaign.id] = campaign.model_copy(deep=True)
        return campaign

    async def list_campaigns(self, status: Optional[CampaignStatus] = None) -> List[Campaign]:
        return [
            c.model_copy(deep=True)
            for c in self._campaigns.values()
            if status is None or c.status == status
        ]

    async def transition_campaign_status(
        self,
        campaign_id: str,
        from_status: CampaignStatus,
        to_status: CampaignStatus,
        changes: Optional[Dict[str, Any]] = None
    ) -> bool:
        campaign = self._campaigns.get(campaign_id)
        if campaign is None or campaign.status != from_status:
            return False
        update = dict(changes or {})
        update["status"] = to_status
        self._campaigns[campaign_id] = campaign.model_copy(update=update)
        return True

    async def increment_campaign_counter(self, campaign_id: str, counter: str) -> None:
        campaign = self._campaigns.get(campaign_id)
        if campaign is None:
            return
        self._campaigns[campaign_id] = campaign.model_copy(
            update={counter: getattr(campaign, counter) + 1}
        )

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    async def get_lead(self, lead_id: str) -> Optional[Lead]:
        lead = self._leads.get(lead_id)
        return lead.model_copy(deep=True) if lead else None

    async def add_lead(self, lead: Lead) -> Lead:
        if lead.created_at is None:
            lead = lead.model_copy(update={"created_at": utc_now()})
        self._leads[lead.id] = lead.model_copy(deep=True)
        return lead

    async def find_leads_by_phone(self, organization_id: str, phone_number: str) -> List[Lead]:
        return [
            lead.model_copy(deep=True)
            for lead in self._leads.values()
            if lead.organization_id == organization_id and lead.phone_number == phone_number
        ]

    async def list_eligible_leads(self, campaign_id: str, now: datetime, limit: int) -> List[Lead]:
        eligible = [
            lead for lead in self._leads.values()
            if lead.campaign_id == campaign_id and lead.is_eligible(now)
        ]
        eligible.sort(key=lambda lead: (
            lead.last_attempted_at is not None,
            lead.last_attempted_at or _EPOCH,
            lead.created_at or _EPOCH,
        ))
        return [lead.model_copy(deep=True) for lead in eligible[:limit]]

    async def count_leads(self, campaign_id: str, statuses: Iterable[LeadStatus]) -> int:
        wanted = set(statuses)
        return sum(
            1 for lead in self._leads.values()
            if lead.campaign_id == campaign_id and lead.call_status in wanted
        )

    async def transition_lead(
        self,
        lead_id: str,
        from_status: LeadStatus,
        to_status: LeadStatus,
        changes: Optional[Dict[str, Any]] = None
    ) -> Optional[Lead]:
        lead = self._leads.get(lead_id)
        if lead is None or lead.call_status != from_status:
            return None
        update = dict(changes or {})
        update["call_status"] = to_status
        updated = lead.model_copy(update=update)
        self._leads[lead_id] = updated
        return updated.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def create_call(self, call: Call) -> Call:
        if call.created_at is None:
            call = call.model_copy(update={"created_at": utc_now()})
        self._calls[call.id] = call.model_copy(deep=True)
        return call

    async def get_call(self, call_id: str) -> Optional[Call]:
        call = self._calls.get(call_id)
        return call.model_copy(deep=True) if call else None

    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        for call in self._calls.values():
            if call.provider_call_id == provider_call_id:
                return call.model_copy(deep=True)
        return None

    async def update_call(
        self,
        call_id: str,
        expected_statuses: Iterable[CallStatus],
        changes: Dict[str, Any]
    ) -> Optional[Call]:
        call = self._calls.get(call_id)
        if call is None or call.status not in set(expected_statuses):
            return None
        updated = call.model_copy(update=changes)
        self._calls[call_id] = updated
        return updated.model_copy(deep=True)

    async def count_active_calls(self, campaign_id: str) -> int:
        return sum(
            1 for call in self._calls.values()
            if call.campaign_id == campaign_id and call.status in ACTIVE_CALL_STATUSES
        )

    async def count_calls_since(self, organization_id: str, since: datetime) -> int:
        return sum(
            1 for call in self._calls.values()
            if call.organization_id == organization_id
            and call.created_at is not None
            and call.created_at >= since
        )

    async def list_stale_calls(
        self,
        statuses: Iterable[CallStatus],
        created_before: datetime
    ) -> List[Call]:
        wanted = set(statuses)
        return [
            call.model_copy(deep=True)
            for call in self._calls.values()
            if call.status in wanted
            and call.created_at is not None
            and call.created_at < created_before
        ]

    def calls_for_lead(self, lead_id: str) -> List[Call]:
        return [c.model_copy(deep=True) for c in self._calls.values() if c.lead_id == lead_id]

    # ------------------------------------------------------------------
    # Phone numbers
    # ------------------------------------------------------------------

    async def get_phone_number(self, phone_number_id: str) -> Optional[PhoneNumber]:
        number = self._phone_numbers.get(phone_number_id)
        return number.model_copy(deep=True) if number else None

    async def save_phone_number(self, phone_number: PhoneNumber) -> PhoneNumber:
        self._phone_numbers[phone_number.id] = phone_number.model_copy(deep=True)
        return phone_number

    async def list_phone_numbers(self, organization_id: str) -> List[PhoneNumber]:
        return [
            n.model_copy(deep=True)
            for n in self._phone_numbers.values()
            if n.organization_id == organization_id
        ]

    async def compare_and_set_phone_usage(
        self,
        observed: PhoneNumber,
        updated: PhoneNumber
    ) -> bool:
        current = self._phone_numbers.get(observed.id)
        if current is None:
            return False
        if (
            current.current_hour_count != observed.current_hour_count
            or current.current_day_count != observed.current_day_count
            or current.last_used_at != observed.last_used_at
        ):
            return False
        self._phone_numbers[observed.id] = current.model_copy(update={
            "current_hour_count": updated.current_hour_count,
            "current_day_count": updated.current_day_count,
            "last_used_at": updated.last_used_at,
            "last_reset_at": updated.last_reset_at,
        })
        return True

    async def release_phone_usage(self, phone_number_id: str, now: datetime) -> None:
        current = self._phone_numbers.get(phone_number_id)
        if current is None:
            return
        self._phone_numbers[phone_number_id] = current.without_usage(now)

    # ------------------------------------------------------------------
    # Webhook idempotency
    # ------------------------------------------------------------------

    async def is_event_processed(self, provider_call_id: str, event_type: str) -> bool:
        return (provider_call_id, event_type) in self._processed_events

    async def record_processed_event(self, provider_call_id: str, event_type: str) -> bool:
        key = (provider_call_id, event_type)
        if key in self._processed_events:
            return False
        self._processed_events.add(key)
        return True
