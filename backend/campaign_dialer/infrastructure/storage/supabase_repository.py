"""
Supabase Orchestrator Repository
PostgreSQL-backed storage through the Supabase client

Conditional updates are expressed as filtered UPDATEs: the filter carries
the expected state, and an empty result means another writer got there
first. Multi-row steps (ledger append + balance, phone usage release,
counter increments) run as Postgres functions, see
migrations/001_campaign_dialer.sql.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client

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

logger = logging.getLogger(__name__)


def _serialize(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Make a column->value dict JSON-safe for PostgREST."""
    payload = {}
    for key, value in changes.items():
        if isinstance(value, datetime):
            payload[key] = value.isoformat()
        elif hasattr(value, "value"):
            payload[key] = value.value
        elif hasattr(value, "model_dump"):
            payload[key] = value.model_dump(mode="json")
        else:
            payload[key] = value
    return payload


class SupabaseOrchestratorRepository(OrchestratorRepository):
    """Repository over the organizations/campaigns/leads/calls/phone_numbers tables"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _first(self, response) -> Optional[Dict[str, Any]]:
        return response.data[0] if response.data else None

    # ------------------------------------------------------------------
    # Organizations & credits
    # ------------------------------------------------------------------

    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        response = self.supabase.table("organizations").select("*").eq("id", organization_id).execute()
        row = self._first(response)
        return Organization(**row) if row else None

    async def save_organization(self, organization: Organization) -> Organization:
        self.supabase.table("organizations").upsert(organization.model_dump(mode="json")).execute()
        return organization

    async def set_organization_suspended(
        self,
        organization_id: str,
        suspended: bool,
        reason: Optional[str] = None
    ) -> None:
        response = self.supabase.table("organizations").update({
            "suspended": suspended,
            "suspension_reason": reason if suspended else None,
        }).eq("id", organization_id).execute()
        if not response.data:
            raise NotFoundError("Organization", organization_id)

    async def apply_ledger_entry(
        self,
        organization_id: str,
        delta: int,
        reason: LedgerReason,
        reference_id: str,
        description: Optional[str] = None
    ) -> LedgerApplication:
        response = self.supabase.rpc("apply_credit_ledger_entry", {
            "p_organization_id": organization_id,
            "p_delta": delta,
            "p_reason": LedgerReason(reason).value,
            "p_reference_id": reference_id,
            "p_description": description,
        }).execute()

        result = response.data
        if isinstance(result, list):
            result = result[0] if result else None
        if not result:
            raise NotFoundError("Organization", organization_id)

        return LedgerApplication(
            entry=CreditLedgerEntry(**result["entry"]),
            requested_delta=delta,
            clamped=bool(result.get("clamped")),
            duplicate=bool(result.get("duplicate")),
        )

    async def list_ledger_entries(self, organization_id: str) -> List[CreditLedgerEntry]:
        response = self.supabase.table("credit_ledger").select("*").eq(
            "organization_id", organization_id
        ).order("created_at").execute()
        return [CreditLedgerEntry(**row) for row in response.data or []]

    async def get_credit_rate(self, action_type: str) -> Optional[int]:
        response = self.supabase.table("credit_rates").select("credits_per_unit").eq(
            "action_type", action_type
        ).execute()
        row = self._first(response)
        return int(row["credits_per_unit"]) if row else None

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        response = self.supabase.table("campaigns").select("*").eq("id", campaign_id).execute()
        row = self._first(response)
        return Campaign(**row) if row else None

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        self.supabase.table("campaigns").upsert(campaign.model_dump(mode="json")).execute()
        return campaign

    async def list_campaigns(self, status: Optional[CampaignStatus] = None) -> List[Campaign]:
        query = self.supabase.table("campaigns").select("*")
        if status is not None:
            query = query.eq("status", CampaignStatus(status).value)
        response = query.execute()
        return [Campaign(**row) for row in response.data or []]

    async def transition_campaign_status(
        self,
        campaign_id: str,
        from_status: CampaignStatus,
        to_status: CampaignStatus,
        changes: Optional[Dict[str, Any]] = None
    ) -> bool:
        payload = _serialize(dict(changes or {}))
        payload["status"] = CampaignStatus(to_status).value
        response = self.supabase.table("campaigns").update(payload).eq(
            "id", campaign_id
        ).eq("status", CampaignStatus(from_status).value).execute()
        return bool(response.data)

    async def increment_campaign_counter(self, campaign_id: str, counter: str) -> None:
        self.supabase.rpc("increment_campaign_counter", {
            "p_campaign_id": campaign_id,
            "p_counter": counter,
        }).execute()

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    async def get_lead(self, lead_id: str) -> Optional[Lead]:
        response = self.supabase.table("leads").select("*").eq("id", lead_id).execute()
        row = self._first(response)
        return Lead(**row) if row else None

    async def add_lead(self, lead: Lead) -> Lead:
        self.supabase.table("leads").upsert(lead.model_dump(mode="json")).execute()
        return lead

    async def find_leads_by_phone(self, organization_id: str, phone_number: str) -> List[Lead]:
        response = self.supabase.table("leads").select("*").eq(
            "organization_id", organization_id
        ).eq("phone_number", phone_number).execute()
        return [Lead(**row) for row in response.data or []]

    async def list_eligible_leads(self, campaign_id: str, now: datetime, limit: int) -> List[Lead]:
        response = self.supabase.table("leads").select("*").eq(
            "campaign_id", campaign_id
        ).eq(
            "call_status", LeadStatus.PENDING.value
        ).or_(
            f"next_eligible_at.is.null,next_eligible_at.lte.{now.isoformat()}"
        ).order(
            "last_attempted_at", desc=False, nullsfirst=True
        ).order("created_at").limit(limit).execute()
        return [Lead(**row) for row in response.data or []]

    async def count_leads(self, campaign_id: str, statuses: Iterable[LeadStatus]) -> int:
        response = self.supabase.table("leads").select("id", count="exact").eq(
            "campaign_id", campaign_id
        ).in_("call_status", [LeadStatus(s).value for s in statuses]).execute()
        return response.count or 0

    async def transition_lead(
        self,
        lead_id: str,
        from_status: LeadStatus,
        to_status: LeadStatus,
        changes: Optional[Dict[str, Any]] = None
    ) -> Optional[Lead]:
        payload = _serialize(dict(changes or {}))
        payload["call_status"] = LeadStatus(to_status).value
        response = self.supabase.table("leads").update(payload).eq(
            "id", lead_id
        ).eq("call_status", LeadStatus(from_status).value).execute()
        row = self._first(response)
        return Lead(**row) if row else None

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def create_call(self, call: Call) -> Call:
        self.supabase.table("calls").insert(call.model_dump(mode="json")).execute()
        return call

    async def get_call(self, call_id: str) -> Optional[Call]:
        response = self.supabase.table("calls").select("*").eq("id", call_id).execute()
        row = self._first(response)
        return Call(**row) if row else None

    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        response = self.supabase.table("calls").select("*").eq(
            "provider_call_id", provider_call_id
        ).execute()
        row = self._first(response)
        return Call(**row) if row else None

    async def update_call(
        self,
        call_id: str,
        expected_statuses: Iterable[CallStatus],
        changes: Dict[str, Any]
    ) -> Optional[Call]:
        response = self.supabase.table("calls").update(_serialize(changes)).eq(
            "id", call_id
        ).in_("status", [CallStatus(s).value for s in expected_statuses]).execute()
        row = self._first(response)
        return Call(**row) if row else None

    async def count_active_calls(self, campaign_id: str) -> int:
        response = self.supabase.table("calls").select("id", count="exact").eq(
            "campaign_id", campaign_id
        ).in_("status", [s.value for s in ACTIVE_CALL_STATUSES]).execute()
        return response.count or 0

    async def count_calls_since(self, organization_id: str, since: datetime) -> int:
        response = self.supabase.table("calls").select("id", count="exact").eq(
            "organization_id", organization_id
        ).gte("created_at", since.isoformat()).execute()
        return response.count or 0

    async def list_stale_calls(
        self,
        statuses: Iterable[CallStatus],
        created_before: datetime
    ) -> List[Call]:
        response = self.supabase.table("calls").select("*").in_(
            "status", [CallStatus(s).value for s in statuses]
        ).lt("created_at", created_before.isoformat()).execute()
        return [Call(**row) for row in response.data or []]

    # ------------------------------------------------------------------
    # Phone numbers
    # ------------------------------------------------------------------

    async def get_phone_number(self, phone_number_id: str) -> Optional[PhoneNumber]:
        response = self.supabase.table("phone_numbers").select("*").eq("id", phone_number_id).execute()
        row = self._first(response)
        return PhoneNumber(**row) if row else None

    async def save_phone_number(self, phone_number: PhoneNumber) -> PhoneNumber:
        self.supabase.table("phone_numbers").upsert(phone_number.model_dump(mode="json")).execute()
        return phone_number

    async def list_phone_numbers(self, organization_id: str) -> List[PhoneNumber]:
        response = self.supabase.table("phone_numbers").select("*").eq(
            "organization_id", organization_id
        ).execute()
        return [PhoneNumber(**row) for row in response.data or []]

    async def compare_and_set_phone_usage(
        self,
        observed: PhoneNumber,
        updated: PhoneNumber
    ) -> bool:
        query = self.supabase.table("phone_numbers").update(_serialize({
            "current_hour_count": updated.current_hour_count,
            "current_day_count": updated.current_day_count,
            "last_used_at": updated.last_used_at,
            "last_reset_at": updated.last_reset_at,
        })).eq("id", observed.id).eq(
            "current_hour_count", observed.current_hour_count
        ).eq("current_day_count", observed.current_day_count)

        if observed.last_used_at is None:
            query = query.is_("last_used_at", "null")
        else:
            query = query.eq("last_used_at", observed.last_used_at.isoformat())

        response = query.execute()
        return bool(response.data)

    async def release_phone_usage(self, phone_number_id: str, now: datetime) -> None:
        self.supabase.rpc("release_phone_number_usage", {
            "p_phone_number_id": phone_number_id,
            "p_now": now.isoformat(),
        }).execute()

    # ------------------------------------------------------------------
    # Webhook idempotency
    # ------------------------------------------------------------------

    async def is_event_processed(self, provider_call_id: str, event_type: str) -> bool:
        response = self.supabase.table("processed_provider_events").select("provider_call_id").eq(
            "provider_call_id", provider_call_id
        ).eq("event_type", event_type).execute()
        return bool(response.data)

    async def record_processed_event(self, provider_call_id: str, event_type: str) -> bool:
        response = self.supabase.table("processed_provider_events").upsert(
            {"provider_call_id": provider_call_id, "event_type": event_type},
            on_conflict="provider_call_id,event_type",
            ignore_duplicates=True
        ).execute()
        return bool(response.data)
