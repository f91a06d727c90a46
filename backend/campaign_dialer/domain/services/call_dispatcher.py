"""
Call Dispatcher
Turns one eligible lead into a placed call

Order of operations:
1. Estimate one minute of usage at the campaign's voice-tier rate
2. Admission (credits, limits, concurrency slot)
3. Originating number from the pool
4. Claim the lead (pending -> calling)
5. Create the Call row (initiating)
6. Ask the voice provider to place the call, bounded by a timeout

Anything taken in steps 2-4 is given back when a later step fails.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable, Optional
from pydantic import BaseModel

from campaign_dialer.core.exceptions import (
    ProviderError,
    ProviderRejectedError,
)
from campaign_dialer.domain.interfaces.orchestrator_repository import OrchestratorRepository
from campaign_dialer.domain.interfaces.voice_provider import CreateCallRequest, VoiceCallProvider
from campaign_dialer.domain.models.call import Call, CallStatus
from campaign_dialer.domain.models.campaign import Campaign, CampaignStatus
from campaign_dialer.domain.models.lead import Lead
from campaign_dialer.domain.models.organization import Organization
from campaign_dialer.domain.models.phone_number import PhoneNumber
from campaign_dialer.domain.services.admission_controller import AdmissionController
from campaign_dialer.domain.services.credit_ledger import CreditLedger
from campaign_dialer.domain.services.lead_state_machine import LeadStateMachine
from campaign_dialer.domain.services.phone_number_pool import PhoneNumberPool
from campaign_dialer.domain.services.retry_policy import RetryPolicyManager
from campaign_dialer.utils.clock import utc_now

logger = logging.getLogger(__name__)


class DispatchFailure(BaseModel):
    """Why a dispatch did not produce a call"""
    reason: str
    retryable: bool = True
    org_wide: bool = False   # stop dispatching for this organization this tick


class DispatchResult(BaseModel):
    """Outcome of a dispatch attempt"""
    call: Optional[Call] = None
    failure: Optional[DispatchFailure] = None

    @property
    def success(self) -> bool:
        return self.call is not None

    @classmethod
    def failed(cls, reason: str, retryable: bool = True, org_wide: bool = False) -> "DispatchResult":
        return cls(failure=DispatchFailure(reason=reason, retryable=retryable, org_wide=org_wide))


class CallDispatcher:
    """
    Places outbound calls for eligible leads.

    Completion is never simulated here: a dispatched call stays active
    until the reconciler receives the provider's end event (or the stale
    call reaper gives up on it).
    """

    def __init__(
        self,
        repository: OrchestratorRepository,
        credit_ledger: CreditLedger,
        admission: AdmissionController,
        phone_pool: PhoneNumberPool,
        state_machine: LeadStateMachine,
        retry_policy: RetryPolicyManager,
        provider: VoiceCallProvider,
        provider_timeout_seconds: float = 15.0,
        clock: Callable[[], datetime] = utc_now
    ):
        self.repository = repository
        self.credit_ledger = credit_ledger
        self.admission = admission
        self.phone_pool = phone_pool
        self.state_machine = state_machine
        self.retry_policy = retry_policy
        self.provider = provider
        self.provider_timeout_seconds = provider_timeout_seconds
        self._clock = clock

    async def estimate_call_credits(self, campaign: Campaign) -> int:
        """One minute at the campaign's tier rate."""
        return await self.credit_ledger.get_voice_rate(campaign.voice_tier)

    async def dispatch(self, lead: Lead, campaign: Campaign, organization: Organization) -> DispatchResult:
        """
        Place one call for `lead`.

        Admission denials and pool exhaustion leave the lead pending and
        are returned as failures, never raised.
        """
        estimate = await self.estimate_call_credits(campaign)

        decision = await self.admission.try_admit(organization.id, estimate)
        if not decision.allowed:
            return DispatchResult.failed(decision.reason, org_wide=decision.org_wide)

        now = self._clock()
        number = await self.phone_pool.acquire_number(
            organization.id,
            now=now,
            pinned_id=campaign.phone_number_id
        )
        if number is None:
            await self.admission.release(organization.id)
            return DispatchResult.failed("no_phone_number_available", org_wide=campaign.phone_number_id is None)

        claimed = await self.state_machine.claim_for_dispatch(lead, now=now)
        if claimed is None:
            await self._release_resources(organization.id, number.id)
            return DispatchResult.failed("lead_already_claimed")

        call = await self.repository.create_call(Call(
            id=str(uuid.uuid4()),
            lead_id=lead.id,
            campaign_id=campaign.id,
            organization_id=organization.id,
            phone_number_id=number.id,
            to_number=lead.phone_number,
            status=CallStatus.INITIATING,
            created_at=now
        ))

        request = CreateCallRequest(
            assistant_id=campaign.assistant_id,
            to_number=lead.phone_number,
            phone_number_id=number.provider_phone_number_id or number.id,
            metadata={
                "call_id": call.id,
                "organization_id": organization.id,
                "campaign_id": campaign.id,
                "lead_id": lead.id,
            }
        )

        try:
            handle = await asyncio.wait_for(
                self.provider.create_call(request),
                timeout=self.provider_timeout_seconds
            )
        except ProviderRejectedError as e:
            return await self._handle_rejection(call, claimed, campaign, number, e)
        except asyncio.TimeoutError:
            return await self._handle_transport_failure(
                call, claimed, campaign, number,
                f"provider_timeout_after_{self.provider_timeout_seconds}s"
            )
        except ProviderError as e:
            return await self._handle_transport_failure(call, claimed, campaign, number, e.message)

        # The reconciler may already have moved the call on; never downgrade it
        updated = await self.repository.update_call(
            call.id,
            [CallStatus.INITIATING],
            {"status": CallStatus.INITIATED, "provider_call_id": handle.provider_call_id}
        )
        if updated is None:
            updated = await self.repository.update_call(
                call.id,
                [CallStatus.IN_PROGRESS, CallStatus.COMPLETED, CallStatus.FAILED],
                {"provider_call_id": handle.provider_call_id}
            ) or call

        logger.info(
            f"Dispatched call {call.id} (provider {handle.provider_call_id}) "
            f"to lead {lead.id}, attempt {claimed.attempt_count}/{campaign.max_attempts}"
        )
        return DispatchResult(call=updated)

    async def _handle_transport_failure(
        self,
        call: Call,
        lead: Lead,
        campaign: Campaign,
        number: PhoneNumber,
        reason: str
    ) -> DispatchResult:
        """Timeout, network or 5xx: counts as a failed attempt."""
        logger.warning(f"Provider failed for call {call.id}: {reason}")
        await self._fail_call(call, reason)
        await self._release_resources(call.organization_id, number.id)

        failed = await self.state_machine.mark_failed(lead.id)
        if failed:
            await self.retry_policy.on_attempt_failed(failed, campaign, retryable=True)
        return DispatchResult.failed(f"provider_transport_error: {reason}", retryable=True)

    async def _handle_rejection(
        self,
        call: Call,
        lead: Lead,
        campaign: Campaign,
        number: PhoneNumber,
        error: ProviderRejectedError
    ) -> DispatchResult:
        """
        4xx: the request itself is wrong (assistant or number reference),
        so retrying the lead cannot help. The lead goes back to pending
        and the campaign is paused until someone fixes it.
        """
        reason = f"provider_rejected ({error.status_code}): {error.message}"
        logger.error(f"Provider rejected call {call.id} for campaign {campaign.id}: {reason}")
        await self._fail_call(call, reason)
        await self._release_resources(call.organization_id, number.id)
        await self.state_machine.rollback_dispatch(lead)

        paused = await self.repository.transition_campaign_status(
            campaign.id,
            CampaignStatus.ACTIVE,
            CampaignStatus.PAUSED,
            {"last_error": reason}
        )
        if paused:
            logger.warning(f"Campaign {campaign.id} paused: {reason}")
        return DispatchResult.failed(reason, retryable=False)

    async def _fail_call(self, call: Call, reason: str) -> None:
        await self.repository.update_call(
            call.id,
            [CallStatus.INITIATING, CallStatus.INITIATED],
            {
                "status": CallStatus.FAILED,
                "failure_reason": reason,
                "ended_at": self._clock(),
            }
        )
        await self.repository.increment_campaign_counter(call.campaign_id, "calls_failed")

    async def _release_resources(self, organization_id: str, phone_number_id: str) -> None:
        await self.admission.release(organization_id)
        await self.phone_pool.release_number(phone_number_id)
