"""
Lead Import Service
Adds uploaded contacts to a campaign as pending leads
"""
import logging
import re
import uuid
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from campaign_dialer.domain.interfaces.orchestrator_repository import OrchestratorRepository
from campaign_dialer.domain.models.campaign import Campaign
from campaign_dialer.domain.models.lead import Lead, LeadStatus
from campaign_dialer.utils.clock import utc_now

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number to E.164.

    10 digits are taken as US/Canada (+1). Anything else must already
    carry its country code. Returns None when the result is not 10-15
    digits long.
    """
    if not raw:
        return None
    digits = _NON_DIGITS.sub("", str(raw))
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if 10 <= len(digits) <= 15:
        return f"+{digits}"
    return None


class ImportContact(BaseModel):
    """One uploaded contact row (column mapping happens upstream)"""
    phone_number: str
    name: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class ImportSummary(BaseModel):
    """Counts for an import run"""
    created: int = 0
    moved: int = 0
    duplicates_created: int = 0
    skipped_invalid: int = 0
    skipped_existing: int = 0
    skipped_in_call: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def imported(self) -> int:
        return self.created + self.moved + self.duplicates_created


class LeadImportService:
    """
    Creates leads for a campaign.

    A number already in the campaign is skipped. A number that belongs to
    another campaign of the same organization follows the campaign's
    `allow_duplicate_leads` setting:

    - False: the existing lead is moved into this campaign and reset to
      pending with a fresh attempt count (skipped while it is on a call)
    - True: a new lead is created and flagged as a duplicate of the
      original
    """

    def __init__(self, repository: OrchestratorRepository):
        self.repository = repository

    async def import_contacts(self, campaign: Campaign, contacts: List[ImportContact]) -> ImportSummary:
        summary = ImportSummary()
        seen = set()

        for contact in contacts:
            phone = normalize_phone(contact.phone_number)
            if phone is None:
                summary.skipped_invalid += 1
                summary.errors.append(f"Invalid phone number: {contact.phone_number}")
                continue

            if phone in seen:
                summary.skipped_existing += 1
                continue
            seen.add(phone)

            existing = await self.repository.find_leads_by_phone(campaign.organization_id, phone)
            if any(lead.campaign_id == campaign.id for lead in existing):
                summary.skipped_existing += 1
                continue

            if not existing:
                await self._create_lead(campaign, phone, contact)
                summary.created += 1
                continue

            original = min(existing, key=lambda lead: lead.created_at or utc_now())
            if campaign.allow_duplicate_leads:
                await self._create_lead(campaign, phone, contact, original=original)
                summary.duplicates_created += 1
            elif original.call_status == LeadStatus.CALLING:
                logger.info(f"Lead {original.id} is on a call - not moving it to campaign {campaign.id}")
                summary.skipped_in_call += 1
            elif await self._move_lead(original, campaign, contact) is None:
                logger.info(f"Lead {original.id} changed status during import - not moving it")
                summary.skipped_in_call += 1
            else:
                summary.moved += 1

        logger.info(
            f"Imported {summary.imported} leads into campaign {campaign.id} "
            f"({summary.created} new, {summary.moved} moved, {summary.duplicates_created} duplicates, "
            f"{summary.skipped_invalid} invalid, {summary.skipped_existing} already present)"
        )
        return summary

    async def _create_lead(
        self,
        campaign: Campaign,
        phone: str,
        contact: ImportContact,
        original: Optional[Lead] = None
    ) -> Lead:
        return await self.repository.add_lead(Lead(
            id=str(uuid.uuid4()),
            campaign_id=campaign.id,
            organization_id=campaign.organization_id,
            phone_number=phone,
            name=contact.name,
            custom_fields=contact.custom_fields,
            is_duplicate=original is not None,
            original_lead_id=original.id if original else None,
            created_at=utc_now()
        ))

    async def _move_lead(self, lead: Lead, campaign: Campaign, contact: ImportContact) -> Optional[Lead]:
        """Reset the lead into `campaign`, only if its status is still the one we read"""
        moved = await self.repository.transition_lead(lead.id, lead.call_status, LeadStatus.PENDING, {
            "campaign_id": campaign.id,
            "attempt_count": 1,
            "next_eligible_at": None,
            "last_attempted_at": None,
            "name": contact.name or lead.name,
            "custom_fields": {**lead.custom_fields, **contact.custom_fields},
        })
        if moved is not None:
            logger.info(f"Moved lead {lead.id} from campaign {lead.campaign_id} to {campaign.id}")
        return moved
