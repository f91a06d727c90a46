"""
Service Container
Builds the orchestrator services around one repository, slot store and provider
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from supabase import create_client

from campaign_dialer.core.config import DialerConfig, Settings
from campaign_dialer.domain.interfaces.call_slot_store import CallSlotStore
from campaign_dialer.domain.interfaces.orchestrator_repository import OrchestratorRepository
from campaign_dialer.domain.interfaces.voice_provider import VoiceCallProvider
from campaign_dialer.domain.services.admission_controller import AdmissionController
from campaign_dialer.domain.services.call_dispatcher import CallDispatcher
from campaign_dialer.domain.services.call_reconciler import CallReconciler
from campaign_dialer.domain.services.credit_ledger import CreditLedger
from campaign_dialer.domain.services.lead_import_service import LeadImportService
from campaign_dialer.domain.services.lead_state_machine import LeadStateMachine
from campaign_dialer.domain.services.phone_number_pool import PhoneNumberPool
from campaign_dialer.domain.services.retry_policy import RetryPolicyManager
from campaign_dialer.infrastructure.cache.memory_slot_store import InMemoryCallSlotStore
from campaign_dialer.infrastructure.cache.redis_slot_store import RedisCallSlotStore
from campaign_dialer.infrastructure.storage.memory_repository import InMemoryOrchestratorRepository
from campaign_dialer.infrastructure.storage.supabase_repository import SupabaseOrchestratorRepository
from campaign_dialer.infrastructure.telephony.vapi_provider import VapiVoiceProvider
from campaign_dialer.utils.clock import utc_now

logger = logging.getLogger(__name__)


class DialerContainer:
    """
    Holds one instance of each service.

    The scheduler worker and the webhook API each build their own
    container; they share state only through the repository and the slot
    store.
    """

    def __init__(
        self,
        repository: OrchestratorRepository,
        slot_store: CallSlotStore,
        provider: Optional[VoiceCallProvider] = None,
        config: Optional[DialerConfig] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.repository = repository
        self.slot_store = slot_store
        self.provider = provider
        self.config = config or DialerConfig()
        self.clock = clock

        self.credit_ledger = CreditLedger(repository, default_rates=self.config.credit_rates)
        self.admission = AdmissionController(repository, self.credit_ledger, slot_store, clock=clock)
        self.phone_pool = PhoneNumberPool(repository, clock=clock)
        self.state_machine = LeadStateMachine(repository, clock=clock)
        self.retry_policy = RetryPolicyManager(repository, self.state_machine, clock=clock)
        self.reconciler = CallReconciler(
            repository,
            self.credit_ledger,
            self.admission,
            self.phone_pool,
            self.state_machine,
            self.retry_policy,
            clock=clock
        )
        self.lead_import = LeadImportService(repository)
        self.dispatcher = None
        if provider is not None:
            self.dispatcher = CallDispatcher(
                repository,
                self.credit_ledger,
                self.admission,
                self.phone_pool,
                self.state_machine,
                self.retry_policy,
                provider,
                provider_timeout_seconds=self.config.provider_timeout_seconds,
                clock=clock
            )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        config: DialerConfig,
        with_provider: bool = True
    ) -> "DialerContainer":
        """
        Production wiring: Supabase storage, Redis slot counters, Vapi.

        Without Supabase credentials everything runs in memory, which is
        only correct for a single process.
        """
        if settings.supabase_url and settings.supabase_service_key:
            repository = SupabaseOrchestratorRepository(
                create_client(settings.supabase_url, settings.supabase_service_key)
            )
            slot_store = RedisCallSlotStore(redis_url=settings.redis_url)
        else:
            logger.warning("SUPABASE_URL/SUPABASE_SERVICE_KEY not set - using in-memory storage")
            repository = InMemoryOrchestratorRepository()
            slot_store = InMemoryCallSlotStore()

        provider = None
        if with_provider:
            if not settings.vapi_api_key:
                raise RuntimeError("VAPI_API_KEY must be set to place calls")
            provider = VapiVoiceProvider(
                api_key=settings.vapi_api_key,
                base_url=settings.vapi_base_url,
                timeout_seconds=config.provider_timeout_seconds
            )

        return cls(repository, slot_store, provider=provider, config=config)

    async def close(self) -> None:
        if self.provider is not None:
            await self.provider.close()
        await self.slot_store.close()
