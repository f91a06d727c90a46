"""
Shared fixtures for campaign dialer tests
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from campaign_dialer.container import DialerContainer
from campaign_dialer.core.config import DialerConfig
from campaign_dialer.domain.interfaces.voice_provider import (
    CreateCallRequest,
    ProviderCallHandle,
    VoiceCallProvider,
)
from campaign_dialer.domain.models import (
    Campaign,
    CampaignStatus,
    Lead,
    Organization,
    PhoneNumber,
    ProviderEvent,
    ProviderEventType,
    VoiceTier,
)
from campaign_dialer.infrastructure.cache.memory_slot_store import InMemoryCallSlotStore
from campaign_dialer.infrastructure.storage.memory_repository import InMemoryOrchestratorRepository


# Wednesday 10:00 in New York, inside the default calling window
START = datetime(2025, 1, 15, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeVoiceProvider(VoiceCallProvider):
    """Records create-call requests; can be told to fail or stall"""

    def __init__(self):
        self.requests: List[CreateCallRequest] = []
        self.error: Optional[Exception] = None
        self.delay: float = 0
        self._counter = 0

    @property
    def name(self) -> str:
        return "fake"

    async def create_call(self, request: CreateCallRequest) -> ProviderCallHandle:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self._counter += 1
        return ProviderCallHandle(provider_call_id=f"prov-{self._counter}", status="queued")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeVoiceProvider()


@pytest.fixture
def repository():
    return InMemoryOrchestratorRepository()


@pytest.fixture
def slot_store():
    return InMemoryCallSlotStore()


@pytest.fixture
def dialer_config():
    return DialerConfig(provider_timeout_seconds=1.0, batch_size=10)


@pytest.fixture
def container(repository, slot_store, provider, dialer_config, clock):
    return DialerContainer(
        repository,
        slot_store,
        provider=provider,
        config=dialer_config,
        clock=clock
    )


@pytest.fixture
async def org(repository):
    return await repository.save_organization(Organization(
        id="org-1",
        name="Acme",
        credit_balance=1000,
        max_concurrent_calls=5
    ))


@pytest.fixture
async def phone_number(repository, org):
    return await repository.save_phone_number(PhoneNumber(
        id="pn-1",
        organization_id=org.id,
        number="+15550000001",
        provider_phone_number_id="vapi-pn-1"
    ))


@pytest.fixture
async def campaign(repository, org):
    return await repository.save_campaign(Campaign(
        id="camp-1",
        organization_id=org.id,
        name="January outreach",
        status=CampaignStatus.ACTIVE,
        assistant_id="asst-1",
        voice_tier=VoiceTier.STANDARD,
        max_attempts=3,
        backoff_interval_seconds=3600
    ))


@pytest.fixture
async def lead(repository, campaign, clock):
    return await repository.add_lead(Lead(
        id="lead-1",
        campaign_id=campaign.id,
        organization_id=campaign.organization_id,
        phone_number="+15551234567",
        name="Jane Doe",
        created_at=clock() - timedelta(days=1)
    ))


def ended_event(
    call_id: str,
    provider_call_id: str = "prov-1",
    duration_seconds: Optional[int] = 90,
    ended_reason: Optional[str] = "customer-ended-call",
    outcome: Optional[str] = None
) -> ProviderEvent:
    return ProviderEvent(
        provider_call_id=provider_call_id,
        event_type=ProviderEventType.CALL_ENDED,
        correlation_call_id=call_id,
        duration_seconds=duration_seconds,
        ended_reason=ended_reason,
        outcome=outcome
    )


@pytest.fixture
def make_ended_event():
    return ended_event
