"""
Call Reconciler
Applies voice provider events to calls, leads and the credit ledger
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple
from pydantic import BaseModel

from campaign_dialer.domain.interfaces.orchestrator_repository import OrchestratorRepository
from campaign_dialer.domain.models.call import (
    Call,
    CallOutcome,
    CallStatus,
    CONCLUSIVE_OUTCOMES,
    NON_RETRYABLE_OUTCOMES,
    TERMINAL_CALL_STATUSES,
)
from campaign_dialer.domain.models.campaign import Campaign
from campaign_dialer.domain.models.credit import calculate_call_credits
from campaign_dialer.domain.models.lead import LeadStatus
from campaign_dialer.domain.models.provider_event import ProviderEvent, ProviderEventType
from campaign_dialer.domain.services.admission_controller import AdmissionController
from campaign_dialer.domain.services.credit_ledger import CreditLedger, UsageRecord
from campaign_dialer.domain.services.lead_state_machine import LeadStateMachine
from campaign_dialer.domain.services.phone_number_pool import PhoneNumberPool
from campaign_dialer.domain.services.retry_policy import RetryPolicyManager
from campaign_dialer.utils.clock import utc_now

logger = logging.getLogger(__name__)


# Calls shorter than this with an unrecognized end reason count as unanswered
ANSWERED_MIN_DURATION_SECONDS = 30

_ENDED_REASON_OUTCOMES = {
    "customer-ended-call": CallOutcome.ANSWERED,
    "assistant-ended-call": CallOutcome.ANSWERED,
    "assistant-said-end-call-phrase": CallOutcome.ANSWERED,
    "exceeded-max-duration": CallOutcome.ANSWERED,
    "voicemail": CallOutcome.VOICEMAIL,
    "customer-did-not-answer": CallOutcome.NO_ANSWER,
    "no-answer": CallOutcome.NO_ANSWER,
    "silence-timed-out": CallOutcome.NO_ANSWER,
    "silence-timeout": CallOutcome.NO_ANSWER,
    "customer-busy": CallOutcome.BUSY,
    "busy": CallOutcome.BUSY,
    "failed": CallOutcome.FAILED,
}

_INVALID_NUMBER_MARKERS = ("invalid-number", "invalid-phone-number", "number-invalid")

# Provider outcome labels that are not our enum values
_OUTCOME_ALIASES = {
    "connected": CallOutcome.ANSWERED,
    "completed": CallOutcome.ANSWERED,
    "interested": CallOutcome.GOAL_ACHIEVED,
    "converted": CallOutcome.GOAL_ACHIEVED,
    "wrong_number": CallOutcome.INVALID_NUMBER,
}

# Outcomes where no conversation ever took place
_FAILED_CALL_OUTCOMES = {
    CallOutcome.FAILED,
    CallOutcome.INVALID_NUMBER,
    CallOutcome.REJECTED,
}


def classify_outcome(
    ended_reason: Optional[str],
    duration_seconds: Optional[int] = None,
    explicit_outcome: Optional[str] = None
) -> CallOutcome:
    """
    Map a provider end reason to a CallOutcome.

    An explicit outcome on the event (e.g., from call analysis) wins.
    """
    if explicit_outcome:
        label = explicit_outcome.strip().lower()
        try:
            return CallOutcome(label)
        except ValueError:
            if label in _OUTCOME_ALIASES:
                return _OUTCOME_ALIASES[label]

    duration = duration_seconds or 0
    if not ended_reason:
        return CallOutcome.ANSWERED if duration > ANSWERED_MIN_DURATION_SECONDS else CallOutcome.NO_ANSWER

    reason = ended_reason.strip().lower()
    if reason in _ENDED_REASON_OUTCOMES:
        return _ENDED_REASON_OUTCOMES[reason]
    if any(marker in reason for marker in _INVALID_NUMBER_MARKERS):
        return CallOutcome.INVALID_NUMBER
    if "pipeline-error" in reason or reason.endswith("-failed") or "-failed-" in reason:
        return CallOutcome.FAILED
    if "voicemail" in reason:
        return CallOutcome.VOICEMAIL

    return CallOutcome.ANSWERED if duration > ANSWERED_MIN_DURATION_SECONDS else CallOutcome.NO_ANSWER


class ReconcileResult(BaseModel):
    """What an event did"""
    handled: bool
    reason: str
    call_id: Optional[str] = None
    outcome: Optional[CallOutcome] = None
    credits_charged: int = 0


class CallReconciler:
    """
    Consumes provider events. Safe against duplicates, reordering and
    redelivery after a failed attempt:

    - (provider_call_id, event_type) is marked processed only once the
      event has been fully applied; marked events are dropped
    - call updates are conditional on the call still being active
    - settlement is keyed on the call id in the ledger, so an end event for
      a call that is already terminal only charges what is still missing
    """

    def __init__(
        self,
        repository: OrchestratorRepository,
        credit_ledger: CreditLedger,
        admission: AdmissionController,
        phone_pool: PhoneNumberPool,
        state_machine: LeadStateMachine,
        retry_policy: RetryPolicyManager,
        clock: Callable[[], datetime] = utc_now
    ):
        self.repository = repository
        self.credit_ledger = credit_ledger
        self.admission = admission
        self.phone_pool = phone_pool
        self.state_machine = state_machine
        self.retry_policy = retry_policy
        self._clock = clock

    async def on_provider_event(self, event: ProviderEvent) -> ReconcileResult:
        if event.event_type == ProviderEventType.OTHER:
            return ReconcileResult(handled=False, reason="ignored_event_type")

        call = await self._find_call(event)
        if call is None:
            logger.warning(
                f"No call for provider event {event.event_type.value} "
                f"(provider id {event.provider_call_id}) - dropping"
            )
            return ReconcileResult(handled=False, reason="unknown_call")

        if await self.repository.is_event_processed(event.provider_call_id, event.event_type.value):
            logger.info(f"Duplicate {event.event_type.value} for {event.provider_call_id} - dropping")
            return ReconcileResult(handled=False, reason="duplicate_event", call_id=call.id)

        # An exception leaves the event unmarked so the provider's redelivery is applied
        if event.event_type == ProviderEventType.CALL_STARTED:
            if call.status in TERMINAL_CALL_STATUSES:
                logger.info(f"Call {call.id} already {call.status.value} - dropping call-started")
                result = ReconcileResult(handled=False, reason="call_already_terminal", call_id=call.id)
            else:
                result = await self._on_call_started(call, event)
        elif call.status in TERMINAL_CALL_STATUSES:
            result = await self._settle_finished_call(call, event)
        else:
            result = await self._on_call_ended(call, event)

        await self.repository.record_processed_event(event.provider_call_id, event.event_type.value)
        return result

    async def _find_call(self, event: ProviderEvent) -> Optional[Call]:
        if event.correlation_call_id:
            call = await self.repository.get_call(event.correlation_call_id)
            if call is not None:
                return call
        return await self.repository.get_call_by_provider_id(event.provider_call_id)

    async def _on_call_started(self, call: Call, event: ProviderEvent) -> ReconcileResult:
        updated = await self.repository.update_call(
            call.id,
            [CallStatus.INITIATING, CallStatus.INITIATED],
            {
                "status": CallStatus.IN_PROGRESS,
                "started_at": event.started_at or event.timestamp or self._clock(),
                "provider_call_id": call.provider_call_id or event.provider_call_id,
            }
        )
        if updated is None:
            return ReconcileResult(handled=False, reason="call_not_startable", call_id=call.id)

        logger.info(f"Call {call.id} in progress")
        return ReconcileResult(handled=True, reason="call_started", call_id=call.id)

    def _measure(self, call: Call, event: ProviderEvent) -> Tuple[Optional[datetime], datetime, int]:
        """started_at, ended_at and whole-second duration of the call"""
        ended_at = event.ended_at or event.timestamp or self._clock()
        started_at = event.started_at or call.started_at

        duration = event.duration_seconds
        if duration is None and started_at is not None:
            duration = int((ended_at - started_at).total_seconds())
        return started_at, ended_at, max(0, duration or 0)

    async def _price(self, campaign: Optional[Campaign], duration: int) -> int:
        if campaign is None or duration <= 0:
            return 0
        rate = await self.credit_ledger.get_voice_rate(campaign.voice_tier)
        return calculate_call_credits(duration, rate)

    async def _charge(
        self,
        call: Call,
        campaign: Optional[Campaign],
        credits: int,
        duration: int
    ) -> Optional[UsageRecord]:
        if credits <= 0:
            return None
        tier = campaign.voice_tier.value if campaign else "unknown"
        return await self.credit_ledger.record_usage(
            call.organization_id,
            credits,
            reference_id=call.id,
            description=f"Voice call {duration}s ({tier})"
        )

    async def _on_call_ended(self, call: Call, event: ProviderEvent) -> ReconcileResult:
        started_at, ended_at, duration = self._measure(call, event)
        outcome = classify_outcome(event.ended_reason, duration, event.outcome)
        status = CallStatus.FAILED if outcome in _FAILED_CALL_OUTCOMES else CallStatus.COMPLETED

        campaign = await self.repository.get_campaign(call.campaign_id)
        credits = await self._price(campaign, duration)

        updated = await self.repository.update_call(
            call.id,
            [CallStatus.INITIATING, CallStatus.INITIATED, CallStatus.IN_PROGRESS],
            {
                "status": status,
                "provider_call_id": call.provider_call_id or event.provider_call_id,
                "started_at": started_at,
                "ended_at": ended_at,
                "duration_seconds": duration,
                "outcome": outcome,
                "ended_reason": event.ended_reason,
                "recording_url": event.recording_url,
                "transcript": event.transcript,
                "summary": event.summary,
                "cost_credits": credits,
            }
        )
        if updated is None:
            current = await self.repository.get_call(call.id)
            logger.info(f"Call {call.id} finished concurrently - settling against the stored call")
            return await self._settle_finished_call(current or call, event)

        await self.admission.release(call.organization_id)
        await self.repository.increment_campaign_counter(
            call.campaign_id,
            "calls_completed" if status == CallStatus.COMPLETED else "calls_failed"
        )

        # Charge and lead advance are redone by _settle_finished_call if a redelivery arrives
        await self._charge(call, campaign, credits, duration)
        await self._advance_lead(call, campaign, outcome)

        logger.info(
            f"Call {call.id} ended: {outcome.value} after {duration}s, "
            f"{credits} credits (reason: {event.ended_reason})"
        )
        return ReconcileResult(
            handled=True,
            reason="call_ended",
            call_id=call.id,
            outcome=outcome,
            credits_charged=credits
        )

    async def _settle_finished_call(self, call: Call, event: ProviderEvent) -> ReconcileResult:
        """
        End event for a call that is already terminal.

        The dispatcher or the stale call reaper may have failed the call
        before the provider reported on it. The provider still reports
        what actually happened, and that usage is charged. A delivery that
        failed halfway through is completed here as well.
        """
        _, _, duration = self._measure(call, event)
        campaign = await self.repository.get_campaign(call.campaign_id)
        credits = await self._price(campaign, duration)
        changed = False

        if call.cost_credits is None:
            filled = await self.repository.update_call(
                call.id,
                [call.status],
                {
                    "duration_seconds": duration,
                    "cost_credits": credits,
                    "ended_reason": call.ended_reason or event.ended_reason,
                    "recording_url": event.recording_url,
                    "transcript": event.transcript,
                    "summary": event.summary,
                    "provider_call_id": call.provider_call_id or event.provider_call_id,
                }
            )
            changed = filled is not None
        else:
            credits = call.cost_credits

        usage = await self._charge(call, campaign, credits, duration)
        charged = usage.applied if usage is not None and not usage.duplicate else 0

        # A lead still calling after an end event finalized its call has not been advanced yet
        if call.failure_reason is None and call.outcome is not None:
            lead = await self.repository.get_lead(call.lead_id)
            if lead is not None and lead.call_status == LeadStatus.CALLING:
                await self._advance_lead(call, campaign, call.outcome)
                changed = True

        if not changed and not charged:
            logger.info(f"Call {call.id} already {call.status.value} and settled - dropping call-ended")
            return ReconcileResult(handled=False, reason="call_already_terminal", call_id=call.id)

        logger.info(f"Late settlement for call {call.id}: {duration}s, {charged} credits")
        return ReconcileResult(
            handled=True,
            reason="late_settlement",
            call_id=call.id,
            outcome=call.outcome,
            credits_charged=charged
        )

    async def _advance_lead(self, call: Call, campaign: Optional[Campaign], outcome: CallOutcome) -> None:
        if outcome in CONCLUSIVE_OUTCOMES:
            await self.state_machine.mark_completed(call.lead_id)
            return

        failed = await self.state_machine.mark_failed(call.lead_id)
        if failed is None or campaign is None:
            return
        await self.retry_policy.on_attempt_failed(
            failed,
            campaign,
            retryable=outcome not in NON_RETRYABLE_OUTCOMES
        )

    async def reap_stale_calls(
        self,
        older_than_seconds: int,
        in_progress_older_than_seconds: Optional[int] = None
    ) -> List[str]:
        """
        Fail calls whose provider events never arrived.

        Covers a worker dying between creating the Call row and hearing
        back from the provider, a provider that never sends events, and
        (with `in_progress_older_than_seconds`) a started call whose end
        event was lost. A late end event for a reaped call is still
        charged. Returns the ids of the calls that were failed.
        """
        now = self._clock()
        stale = await self.repository.list_stale_calls(
            [CallStatus.INITIATING, CallStatus.INITIATED],
            now - timedelta(seconds=older_than_seconds)
        )
        if in_progress_older_than_seconds is not None:
            stale += await self.repository.list_stale_calls(
                [CallStatus.IN_PROGRESS],
                now - timedelta(seconds=in_progress_older_than_seconds)
            )

        reaped = []
        for call in stale:
            updated = await self.repository.update_call(
                call.id,
                [call.status],
                {
                    "status": CallStatus.FAILED,
                    "failure_reason": f"stale_{call.status.value}_timeout",
                    "ended_at": now,
                    "outcome": CallOutcome.FAILED,
                }
            )
            if updated is None:
                continue

            await self.admission.release(call.organization_id)
            if call.status == CallStatus.INITIATING and call.phone_number_id:
                # Provider never got the request
                await self.phone_pool.release_number(call.phone_number_id, now)
            await self.repository.increment_campaign_counter(call.campaign_id, "calls_failed")

            campaign = await self.repository.get_campaign(call.campaign_id)
            await self._advance_lead(call, campaign, CallOutcome.FAILED)

            logger.warning(f"Reaped stale call {call.id} ({call.status.value} since {call.created_at})")
            reaped.append(call.id)

        return reaped
