"""
Admission Controller
Gate every outbound call on suspension, credits, rate limits and concurrency
"""
import logging
from datetime import datetime, timedelta
from typing import Callable
from pydantic import BaseModel

from campaign_dialer.domain.interfaces.call_slot_store import CallSlotStore
from campaign_dialer.domain.interfaces.orchestrator_repository import OrchestratorRepository
from campaign_dialer.domain.services.credit_ledger import CreditLedger
from campaign_dialer.utils.clock import utc_now

logger = logging.getLogger(__name__)


# Denials that apply to every campaign of the organization
ORG_WIDE_DENIALS = {
    "organization_not_found",
    "organization_suspended",
    "insufficient_credits",
    "hourly_call_limit_reached",
    "daily_call_limit_reached",
    "max_concurrent_calls_reached",
}


class AdmissionDecision(BaseModel):
    """Result of an admission check"""
    allowed: bool
    reason: str

    @property
    def org_wide(self) -> bool:
        return not self.allowed and self.reason in ORG_WIDE_DENIALS


class AdmissionController:
    """
    Decides whether an organization may place one more call right now.

    A positive decision holds one in-flight slot until `release()` is
    called. No credits are debited here; usage is settled when the call
    ends.
    """

    def __init__(
        self,
        repository: OrchestratorRepository,
        credit_ledger: CreditLedger,
        slot_store: CallSlotStore,
        clock: Callable[[], datetime] = utc_now
    ):
        self.repository = repository
        self.credit_ledger = credit_ledger
        self.slot_store = slot_store
        self._clock = clock

    async def try_admit(self, organization_id: str, estimated_credits: int) -> AdmissionDecision:
        """
        Check in order: organization exists, not suspended, enough credits,
        hourly/daily limits, then atomically take a concurrency slot.
        """
        org = await self.repository.get_organization(organization_id)
        if org is None:
            return self._deny(organization_id, "organization_not_found")

        if org.suspended:
            return self._deny(organization_id, "organization_suspended")

        credit_check = await self.credit_ledger.check_allowed(organization_id, estimated_credits)
        if not credit_check.allowed:
            logger.info(
                f"Org {organization_id} denied: balance {credit_check.balance} "
                f"< estimate {estimated_credits}"
            )
            reason = (
                "organization_suspended"
                if credit_check.reason == "organization_suspended"
                else "insufficient_credits"
            )
            return self._deny(organization_id, reason)

        now = self._clock()
        if org.max_calls_per_hour is not None:
            placed = await self.repository.count_calls_since(organization_id, now - timedelta(hours=1))
            if placed >= org.max_calls_per_hour:
                return self._deny(organization_id, "hourly_call_limit_reached")

        if org.max_calls_per_day is not None:
            placed = await self.repository.count_calls_since(organization_id, now - timedelta(days=1))
            if placed >= org.max_calls_per_day:
                return self._deny(organization_id, "daily_call_limit_reached")

        if not await self.slot_store.try_acquire(organization_id, org.max_concurrent_calls):
            return self._deny(organization_id, "max_concurrent_calls_reached")

        return AdmissionDecision(allowed=True, reason="admitted")

    async def release(self, organization_id: str) -> None:
        """Give back the in-flight slot taken by an admitted call."""
        await self.slot_store.release(organization_id)

    async def active_calls(self, organization_id: str) -> int:
        return await self.slot_store.count(organization_id)

    def _deny(self, organization_id: str, reason: str) -> AdmissionDecision:
        logger.debug(f"Admission denied for org {organization_id}: {reason}")
        return AdmissionDecision(allowed=False, reason=reason)
