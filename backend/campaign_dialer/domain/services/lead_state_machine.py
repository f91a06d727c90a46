"""
Lead State Machine
Conditional call_status transitions for leads
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from campaign_dialer.core.exceptions import InvalidLeadTransition
from campaign_dialer.domain.interfaces.orchestrator_repository import OrchestratorRepository
from campaign_dialer.domain.models.lead import ALLOWED_TRANSITIONS, Lead, LeadStatus
from campaign_dialer.utils.clock import utc_now

logger = logging.getLogger(__name__)


class LeadStateMachine:
    """
    pending -> calling -> completed | failed, failed -> pending | exhausted,
    and calling -> pending to roll back a dispatch the provider never took.

    Each transition only succeeds if the lead is still in the expected
    state. A transition that lost a race returns None; one that is not in
    the table raises InvalidLeadTransition.
    """

    def __init__(
        self,
        repository: OrchestratorRepository,
        clock: Callable[[], datetime] = utc_now
    ):
        self.repository = repository
        self._clock = clock

    async def select_eligible(self, campaign_id: str, limit: int, now: Optional[datetime] = None) -> List[Lead]:
        return await self.repository.list_eligible_leads(campaign_id, now or self._clock(), limit)

    async def transition(
        self,
        lead_id: str,
        from_status: LeadStatus,
        to_status: LeadStatus,
        changes: Optional[Dict[str, Any]] = None
    ) -> Optional[Lead]:
        if (from_status, to_status) not in ALLOWED_TRANSITIONS:
            raise InvalidLeadTransition(from_status.value, to_status.value)

        updated = await self.repository.transition_lead(lead_id, from_status, to_status, changes)
        if updated is None:
            logger.info(
                f"Lead {lead_id} transition {from_status.value} -> {to_status.value} "
                f"skipped: state changed concurrently"
            )
        return updated

    async def claim_for_dispatch(self, lead: Lead, now: Optional[datetime] = None) -> Optional[Lead]:
        """pending -> calling"""
        return await self.transition(
            lead.id,
            LeadStatus.PENDING,
            LeadStatus.CALLING,
            {"last_attempted_at": now or self._clock()}
        )

    async def rollback_dispatch(self, lead: Lead) -> Optional[Lead]:
        """calling -> pending; the attempt does not count"""
        return await self.transition(lead.id, LeadStatus.CALLING, LeadStatus.PENDING)

    async def mark_completed(self, lead_id: str) -> Optional[Lead]:
        return await self.transition(lead_id, LeadStatus.CALLING, LeadStatus.COMPLETED)

    async def mark_failed(self, lead_id: str) -> Optional[Lead]:
        return await self.transition(lead_id, LeadStatus.CALLING, LeadStatus.FAILED)

    async def requeue(self, lead_id: str, attempt_count: int, next_eligible_at: datetime) -> Optional[Lead]:
        """failed -> pending with the next attempt number and its backoff"""
        return await self.transition(
            lead_id,
            LeadStatus.FAILED,
            LeadStatus.PENDING,
            {"attempt_count": attempt_count, "next_eligible_at": next_eligible_at}
        )

    async def exhaust(self, lead_id: str) -> Optional[Lead]:
        return await self.transition(lead_id, LeadStatus.FAILED, LeadStatus.EXHAUSTED)
