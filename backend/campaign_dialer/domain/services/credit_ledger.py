"""
Credit Ledger Service
Balance checks, usage settlement, refunds and top-ups per organization
"""
import logging
from typing import Dict, Optional
from pydantic import BaseModel

from campaign_dialer.domain.interfaces.orchestrator_repository import OrchestratorRepository
from campaign_dialer.domain.models.credit import (
    DEFAULT_CREDITS_PER_MINUTE,
    LedgerReason,
    VoiceTier,
    voice_action_type,
)
from campaign_dialer.domain.models.organization import CREDIT_EXHAUSTED_REASON

logger = logging.getLogger(__name__)


class CreditCheck(BaseModel):
    """Result of a credit allowance check"""
    allowed: bool
    reason: Optional[str] = None
    balance: int = 0


class UsageRecord(BaseModel):
    """Result of recording usage against the ledger"""
    applied: int       # credits actually debited
    requested: int     # credits the usage cost
    balance: int       # balance after the debit
    clamped: bool = False
    duplicate: bool = False


class CreditLedger:
    """
    Credit ledger for organizations.

    The balance only moves through `apply_ledger_entry`, which appends the
    entry and updates the balance together and clamps debits at zero. An
    organization whose balance reaches zero through usage is suspended
    with reason 'credit_exhausted'; a top-up lifts that suspension.
    """

    def __init__(
        self,
        repository: OrchestratorRepository,
        default_rates: Optional[Dict[str, int]] = None
    ):
        self.repository = repository
        self._default_rates = {
            voice_action_type(tier): rate for tier, rate in DEFAULT_CREDITS_PER_MINUTE.items()
        }
        if default_rates:
            self._default_rates.update(default_rates)

    async def get_balance(self, organization_id: str) -> int:
        org = await self.repository.get_organization(organization_id)
        return org.credit_balance if org else 0

    async def get_voice_rate(self, tier: VoiceTier) -> int:
        """Credits per minute for a voice tier, from credit_rates with config fallback."""
        action_type = voice_action_type(tier)
        rate = await self.repository.get_credit_rate(action_type)
        if rate is None:
            rate = self._default_rates.get(action_type, DEFAULT_CREDITS_PER_MINUTE[VoiceTier.STANDARD])
        return rate

    async def check_allowed(self, organization_id: str, credits_needed: int) -> CreditCheck:
        """
        Check whether an organization may spend `credits_needed`.

        Nothing is debited.
        """
        org = await self.repository.get_organization(organization_id)
        if org is None:
            return CreditCheck(allowed=False, reason="organization_not_found")

        if org.suspended:
            return CreditCheck(
                allowed=False,
                reason="organization_suspended",
                balance=org.credit_balance
            )

        if org.credit_balance < credits_needed:
            return CreditCheck(
                allowed=False,
                reason=f"insufficient_credits_{org.credit_balance}/{credits_needed}",
                balance=org.credit_balance
            )

        return CreditCheck(allowed=True, reason="credits_available", balance=org.credit_balance)

    async def record_usage(
        self,
        organization_id: str,
        credits: int,
        reference_id: str,
        description: Optional[str] = None
    ) -> UsageRecord:
        """
        Debit usage (settlement) for `reference_id`.

        Recording the same reference twice debits once. If the cost exceeds
        the balance only the balance is debited and the organization is
        suspended.
        """
        result = await self.repository.apply_ledger_entry(
            organization_id=organization_id,
            delta=-abs(credits),
            reason=LedgerReason.SETTLEMENT,
            reference_id=reference_id,
            description=description
        )

        record = UsageRecord(
            applied=-result.entry.delta,
            requested=abs(credits),
            balance=result.entry.balance_after,
            clamped=result.clamped,
            duplicate=result.duplicate
        )

        if result.duplicate:
            logger.info(f"Usage for {reference_id} already recorded - skipping debit")
            return record

        if record.clamped:
            logger.warning(
                f"Ledger underflow for org {organization_id}: cost {record.requested} "
                f"exceeds balance, debited {record.applied}"
            )

        if credits > 0 and record.balance == 0:
            await self.repository.set_organization_suspended(
                organization_id, True, reason=CREDIT_EXHAUSTED_REASON
            )
            logger.warning(f"Organization {organization_id} suspended: credits exhausted")

        return record

    async def refund(
        self,
        organization_id: str,
        credits: int,
        reference_id: str,
        description: Optional[str] = None
    ) -> UsageRecord:
        result = await self.repository.apply_ledger_entry(
            organization_id=organization_id,
            delta=abs(credits),
            reason=LedgerReason.REFUND,
            reference_id=reference_id,
            description=description
        )
        await self._lift_credit_suspension(organization_id, result.entry.balance_after)
        return UsageRecord(
            applied=result.entry.delta,
            requested=abs(credits),
            balance=result.entry.balance_after,
            duplicate=result.duplicate
        )

    async def top_up(
        self,
        organization_id: str,
        credits: int,
        reference_id: str,
        description: Optional[str] = None
    ) -> UsageRecord:
        """Add purchased credits (reference_id is the payment id)."""
        result = await self.repository.apply_ledger_entry(
            organization_id=organization_id,
            delta=abs(credits),
            reason=LedgerReason.TOPUP,
            reference_id=reference_id,
            description=description or "Credit top-up"
        )
        await self._lift_credit_suspension(organization_id, result.entry.balance_after)
        logger.info(f"Topped up org {organization_id} by {credits} credits")
        return UsageRecord(
            applied=result.entry.delta,
            requested=abs(credits),
            balance=result.entry.balance_after,
            duplicate=result.duplicate
        )

    async def _lift_credit_suspension(self, organization_id: str, balance: int) -> None:
        if balance <= 0:
            return
        org = await self.repository.get_organization(organization_id)
        if org and org.suspended and org.suspension_reason == CREDIT_EXHAUSTED_REASON:
            await self.repository.set_organization_suspended(organization_id, False)
            logger.info(f"Organization {organization_id} reinstated after credit top-up")
