"""
Unit Tests for Campaign Scheduler Worker
"""
import asyncio
import uuid

import pytest

from campaign_dialer.container import DialerContainer
from campaign_dialer.domain.models import (
    CallStatus,
    CampaignStatus,
    Lead,
    LeadStatus,
    Organization,
    PhoneNumber,
)
from campaign_dialer.workers.scheduler_worker import CampaignSchedulerWorker


async def add_leads(repository, campaign, count):
    for i in range(count):
        await repository.add_lead(Lead(
            id=str(uuid.uuid4()),
            campaign_id=campaign.id,
            organization_id=campaign.organization_id,
            phone_number=f"+1555700{i:04d}"
        ))


class TestSchedulerTick:
    """Tests for one scheduling pass"""

    @pytest.mark.asyncio
    async def test_dispatches_eligible_leads(self, container, repository, provider, org, phone_number, campaign):
        await add_leads(repository, campaign, 3)
        worker = CampaignSchedulerWorker(container)

        assert await worker.tick() == 3
        assert len(provider.requests) == 3
        assert await repository.count_leads(campaign.id, [LeadStatus.CALLING]) == 3

        # Nothing left until those calls end
        assert await worker.tick() == 0

    @pytest.mark.asyncio
    async def test_respects_concurrency_limit(self, container, repository, provider, phone_number, campaign):
        await repository.save_organization(Organization(id="org-1", credit_balance=1000, max_concurrent_calls=2))
        await add_leads(repository, campaign, 5)
        worker = CampaignSchedulerWorker(container)

        assert await worker.tick() == 2
        assert worker.get_stats()["dispatch_failures"] == 1

    @pytest.mark.asyncio
    async def test_org_denial_stops_all_its_campaigns(self, container, repository, provider, phone_number, campaign):
        await repository.save_organization(Organization(id="org-1", credit_balance=5))
        second = await repository.save_campaign(campaign.model_copy(update={"id": "camp-2"}))
        await add_leads(repository, campaign, 2)
        await add_leads(repository, second, 2)
        worker = CampaignSchedulerWorker(container)

        assert await worker.tick() == 0
        # One denial for the first campaign; the second is never tried
        assert worker.get_stats()["dispatch_failures"] == 1
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_outside_calling_window(self, container, repository, provider, org, phone_number, campaign,
                                          lead, clock):
        clock.advance(hours=10)   # 20:00 in New York
        worker = CampaignSchedulerWorker(container)

        assert await worker.tick() == 0
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_completes_finished_campaign(self, container, repository, org, phone_number, campaign, lead,
                                               make_ended_event):
        worker = CampaignSchedulerWorker(container)
        await worker.tick()
        call = repository.calls_for_lead(lead.id)[0]
        await container.reconciler.on_provider_event(make_ended_event(call.id))

        await worker.tick()

        stored = await repository.get_campaign(campaign.id)
        assert stored.status == CampaignStatus.COMPLETED
        assert stored.completed_at is not None
        assert worker.get_stats()["campaigns_completed"] == 1

    @pytest.mark.asyncio
    async def test_campaign_with_waiting_retry_stays_active(self, container, repository, org, phone_number,
                                                            campaign, lead, make_ended_event):
        worker = CampaignSchedulerWorker(container)
        await worker.tick()
        call = repository.calls_for_lead(lead.id)[0]
        await container.reconciler.on_provider_event(
            make_ended_event(call.id, duration_seconds=0, ended_reason="customer-busy")
        )

        await worker.tick()

        assert (await repository.get_campaign(campaign.id)).status == CampaignStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_paused_campaign_not_dispatched_but_in_flight_call_settles(
        self, container, repository, provider, org, phone_number, campaign, lead, make_ended_event
    ):
        worker = CampaignSchedulerWorker(container)
        assert await worker.tick() == 1
        in_flight = repository.calls_for_lead(lead.id)[0]

        assert await repository.transition_campaign_status(
            campaign.id, CampaignStatus.ACTIVE, CampaignStatus.PAUSED
        )
        await add_leads(repository, campaign, 2)

        assert await worker.tick() == 0
        assert len(provider.requests) == 1
        assert await repository.count_leads(campaign.id, [LeadStatus.PENDING]) == 2

        result = await container.reconciler.on_provider_event(
            make_ended_event(in_flight.id, provider_call_id=in_flight.provider_call_id)
        )

        assert result.handled is True
        assert result.credits_charged == 45
        assert (await repository.get_organization(org.id)).credit_balance == 955
        assert (await repository.get_lead(lead.id)).call_status == LeadStatus.COMPLETED
        assert await container.admission.active_calls(org.id) == 0
        # Still paused; the scheduler does not complete or resume it
        await worker.tick()
        assert (await repository.get_campaign(campaign.id)).status == CampaignStatus.PAUSED
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_reaps_stale_calls(self, container, repository, org, phone_number, campaign, lead, clock):
        worker = CampaignSchedulerWorker(container)
        await worker.tick()

        clock.advance(seconds=601)
        await worker.tick()

        assert worker.get_stats()["stale_calls_reaped"] == 1

    @pytest.mark.asyncio
    async def test_reaps_in_progress_call_after_max_duration(self, container, repository, org, phone_number,
                                                            campaign, lead, clock):
        container.config.max_call_duration_seconds = 1800
        worker = CampaignSchedulerWorker(container)
        await worker.tick()
        call = repository.calls_for_lead(lead.id)[0]
        await repository.update_call(call.id, [CallStatus.INITIATED], {"status": CallStatus.IN_PROGRESS})

        clock.advance(seconds=900)
        await worker.tick()
        assert worker.get_stats()["stale_calls_reaped"] == 0

        clock.advance(seconds=901)
        await worker.tick()
        assert worker.get_stats()["stale_calls_reaped"] == 1
        assert await container.admission.active_calls(org.id) == 0
        assert (await repository.get_call(call.id)).failure_reason == "stale_in_progress_timeout"

    @pytest.mark.asyncio
    async def test_other_org_unaffected_by_denial(self, container, repository, provider, phone_number, campaign):
        await repository.save_organization(Organization(id="org-1", credit_balance=5))
        await repository.save_organization(Organization(id="org-2", credit_balance=1000))
        await repository.save_phone_number(PhoneNumber(id="pn-2", organization_id="org-2", number="+15550000002"))
        other = await repository.save_campaign(campaign.model_copy(update={"id": "camp-2", "organization_id": "org-2"}))
        await add_leads(repository, campaign, 1)
        await repository.add_lead(Lead(
            id="lead-org-2", campaign_id=other.id, organization_id="org-2", phone_number="+15557779999"
        ))

        assert await CampaignSchedulerWorker(container).tick() == 1
        assert provider.requests[0].metadata["organization_id"] == "org-2"


class TestWorkerLifecycle:
    """Tests for run/stop"""

    def test_requires_provider(self, repository, slot_store):
        with pytest.raises(ValueError):
            CampaignSchedulerWorker(DialerContainer(repository, slot_store))

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, container, org, phone_number, campaign, lead):
        container.config.tick_interval_seconds = 0.01
        worker = CampaignSchedulerWorker(container)

        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.05)
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        stats = worker.get_stats()
        assert stats["running"] is False
        assert stats["ticks"] >= 1
        assert stats["calls_dispatched"] == 1
