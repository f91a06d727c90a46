"""
Unit Tests for Lead State Machine and Retry Policy
"""
from datetime import timedelta

import pytest

from campaign_dialer.core.exceptions import InvalidLeadTransition
from campaign_dialer.domain.models import LeadStatus


class TestLeadStateMachine:
    """Tests for conditional lead transitions"""

    @pytest.mark.asyncio
    async def test_claim_moves_pending_to_calling(self, container, lead, clock):
        claimed = await container.state_machine.claim_for_dispatch(lead)

        assert claimed.call_status == LeadStatus.CALLING
        assert claimed.last_attempted_at == clock()

    @pytest.mark.asyncio
    async def test_second_claim_loses(self, container, lead):
        assert await container.state_machine.claim_for_dispatch(lead) is not None
        assert await container.state_machine.claim_for_dispatch(lead) is None

    @pytest.mark.asyncio
    async def test_illegal_transition_raises(self, container, lead):
        with pytest.raises(InvalidLeadTransition):
            await container.state_machine.transition(lead.id, LeadStatus.PENDING, LeadStatus.COMPLETED)

        with pytest.raises(InvalidLeadTransition):
            await container.state_machine.transition(lead.id, LeadStatus.EXHAUSTED, LeadStatus.PENDING)

    @pytest.mark.asyncio
    async def test_transition_from_wrong_state_returns_none(self, container, lead):
        # Lead is pending, not calling
        assert await container.state_machine.mark_completed(lead.id) is None
        stored = await container.repository.get_lead(lead.id)
        assert stored.call_status == LeadStatus.PENDING

    @pytest.mark.asyncio
    async def test_rollback_dispatch(self, container, lead):
        claimed = await container.state_machine.claim_for_dispatch(lead)
        rolled_back = await container.state_machine.rollback_dispatch(claimed)
        assert rolled_back.call_status == LeadStatus.PENDING
        assert rolled_back.attempt_count == 1


class TestRetryPolicy:
    """Tests for requeue/exhaust decisions"""

    async def _fail(self, container, lead, attempt_count=1):
        if attempt_count != 1:
            await container.repository.add_lead(lead.model_copy(update={"attempt_count": attempt_count}))
            lead = await container.repository.get_lead(lead.id)
        await container.state_machine.claim_for_dispatch(lead)
        return await container.state_machine.mark_failed(lead.id)

    @pytest.mark.asyncio
    async def test_first_failure_requeues_with_one_backoff(self, container, lead, campaign, clock):
        failed = await self._fail(container, lead)

        updated = await container.retry_policy.on_attempt_failed(failed, campaign)

        assert updated.call_status == LeadStatus.PENDING
        assert updated.attempt_count == 2
        assert updated.next_eligible_at == clock() + timedelta(seconds=3600)

    @pytest.mark.asyncio
    async def test_backoff_grows_with_attempts(self, container, lead, campaign, clock):
        failed = await self._fail(container, lead, attempt_count=2)

        updated = await container.retry_policy.on_attempt_failed(failed, campaign)

        assert updated.attempt_count == 3
        assert updated.next_eligible_at == clock() + timedelta(seconds=2 * 3600)

    @pytest.mark.asyncio
    async def test_last_attempt_exhausts(self, container, lead, campaign):
        failed = await self._fail(container, lead, attempt_count=3)

        updated = await container.retry_policy.on_attempt_failed(failed, campaign)

        assert updated.call_status == LeadStatus.EXHAUSTED
        assert (await container.repository.get_campaign(campaign.id)).leads_exhausted == 1

    @pytest.mark.asyncio
    async def test_non_retryable_exhausts_immediately(self, container, lead, campaign):
        failed = await self._fail(container, lead)

        updated = await container.retry_policy.on_attempt_failed(failed, campaign, retryable=False)

        assert updated.call_status == LeadStatus.EXHAUSTED
        assert updated.attempt_count == 1

    @pytest.mark.asyncio
    async def test_ignores_lead_that_is_not_failed(self, container, lead, campaign):
        assert await container.retry_policy.on_attempt_failed(lead, campaign) is None

    @pytest.mark.asyncio
    async def test_requeued_lead_selected_after_backoff(self, container, lead, campaign, clock):
        failed = await self._fail(container, lead)
        await container.retry_policy.on_attempt_failed(failed, campaign)

        assert await container.state_machine.select_eligible(campaign.id, 10) == []

        clock.advance(seconds=3600)
        eligible = await container.state_machine.select_eligible(campaign.id, 10)
        assert [l.id for l in eligible] == [lead.id]

    @pytest.mark.asyncio
    async def test_exhausted_lead_never_selected(self, container, lead, campaign, clock):
        failed = await self._fail(container, lead, attempt_count=3)
        await container.retry_policy.on_attempt_failed(failed, campaign)

        clock.advance(days=30)
        assert await container.state_machine.select_eligible(campaign.id, 10) == []
