"""
Retry Policy Manager
Requeue or exhaust a lead after a failed attempt
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from campaign_dialer.domain.interfaces.orchestrator_repository import OrchestratorRepository
from campaign_dialer.domain.models.campaign import Campaign
from campaign_dialer.domain.models.lead import Lead, LeadStatus
from campaign_dialer.domain.services.lead_state_machine import LeadStateMachine
from campaign_dialer.utils.clock import utc_now

logger = logging.getLogger(__name__)


class RetryPolicyManager:
    """
    Linear backoff: the wait before attempt N+1 is backoff x N.

    With max_attempts=3 and a 2h backoff a lead is tried at t, t+2h
    and t+2h+4h, then exhausted.
    """

    def __init__(
        self,
        repository: OrchestratorRepository,
        state_machine: LeadStateMachine,
        clock: Callable[[], datetime] = utc_now
    ):
        self.repository = repository
        self.state_machine = state_machine
        self._clock = clock

    def next_eligible_at(self, lead: Lead, campaign: Campaign, now: datetime) -> datetime:
        return now + timedelta(seconds=campaign.backoff_interval_seconds * lead.attempt_count)

    async def on_attempt_failed(
        self,
        lead: Lead,
        campaign: Campaign,
        retryable: bool = True
    ) -> Optional[Lead]:
        """
        Move a failed lead back to pending or on to exhausted.

        `lead` must already be in the failed state. Returns the updated
        lead, or None if another worker moved it first.
        """
        if lead.call_status != LeadStatus.FAILED:
            logger.warning(f"Lead {lead.id} is {lead.call_status.value}, not failed - no retry decision")
            return None

        if retryable and lead.attempt_count < campaign.max_attempts:
            now = self._clock()
            next_at = self.next_eligible_at(lead, campaign, now)
            updated = await self.state_machine.requeue(lead.id, lead.attempt_count + 1, next_at)
            if updated:
                logger.info(
                    f"Lead {lead.id} scheduled for attempt {updated.attempt_count}/"
                    f"{campaign.max_attempts} at {next_at.isoformat()}"
                )
            return updated

        updated = await self.state_machine.exhaust(lead.id)
        if updated:
            await self.repository.increment_campaign_counter(campaign.id, "leads_exhausted")
            logger.info(
                f"Lead {lead.id} exhausted after attempt {lead.attempt_count}/{campaign.max_attempts}"
                + ("" if retryable else " (non-retryable outcome)")
            )
        return updated
