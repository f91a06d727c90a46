"""
Unit Tests for Credit Ledger
"""
import asyncio
import pytest

from campaign_dialer.domain.models import Organization, VoiceTier, LedgerReason
from campaign_dialer.domain.models.organization import CREDIT_EXHAUSTED_REASON
from campaign_dialer.domain.services.credit_ledger import CreditLedger


class TestCreditCheck:
    """Tests for check_allowed"""

    @pytest.mark.asyncio
    async def test_allows_when_balance_covers_estimate(self, repository, org):
        ledger = CreditLedger(repository)
        check = await ledger.check_allowed(org.id, 30)
        assert check.allowed is True
        assert check.balance == 1000

    @pytest.mark.asyncio
    async def test_denies_when_balance_too_low(self, repository):
        await repository.save_organization(Organization(id="poor", credit_balance=5))
        ledger = CreditLedger(repository)

        check = await ledger.check_allowed("poor", 30)

        assert check.allowed is False
        assert check.reason.startswith("insufficient_credits")
        assert await ledger.get_balance("poor") == 5

    @pytest.mark.asyncio
    async def test_denies_suspended_organization(self, repository):
        await repository.save_organization(Organization(id="s", credit_balance=500, suspended=True))
        check = await CreditLedger(repository).check_allowed("s", 1)
        assert check.allowed is False
        assert check.reason == "organization_suspended"

    @pytest.mark.asyncio
    async def test_unknown_organization(self, repository):
        check = await CreditLedger(repository).check_allowed("missing", 1)
        assert check.allowed is False
        assert check.reason == "organization_not_found"


class TestRecordUsage:
    """Tests for settlement debits"""

    @pytest.mark.asyncio
    async def test_debits_balance_and_appends_entry(self, repository, org):
        ledger = CreditLedger(repository)

        record = await ledger.record_usage(org.id, 45, reference_id="call-1")

        assert record.applied == 45
        assert record.balance == 955
        assert record.clamped is False
        entries = await repository.list_ledger_entries(org.id)
        assert len(entries) == 1
        assert entries[0].delta == -45
        assert entries[0].reason == LedgerReason.SETTLEMENT
        assert entries[0].balance_after == 955

    @pytest.mark.asyncio
    async def test_same_reference_debits_once(self, repository, org):
        ledger = CreditLedger(repository)

        await ledger.record_usage(org.id, 45, reference_id="call-1")
        second = await ledger.record_usage(org.id, 45, reference_id="call-1")

        assert second.duplicate is True
        assert await ledger.get_balance(org.id) == 955
        assert len(await repository.list_ledger_entries(org.id)) == 1

    @pytest.mark.asyncio
    async def test_underflow_clamps_to_zero_and_suspends(self, repository):
        await repository.save_organization(Organization(id="o", credit_balance=20))
        ledger = CreditLedger(repository)

        record = await ledger.record_usage("o", 45, reference_id="call-1")

        assert record.clamped is True
        assert record.applied == 20
        assert record.balance == 0
        org = await repository.get_organization("o")
        assert org.credit_balance == 0
        assert org.suspended is True
        assert org.suspension_reason == CREDIT_EXHAUSTED_REASON

    @pytest.mark.asyncio
    async def test_exact_balance_suspends(self, repository):
        await repository.save_organization(Organization(id="o", credit_balance=45))
        await CreditLedger(repository).record_usage("o", 45, reference_id="call-1")
        org = await repository.get_organization("o")
        assert org.credit_balance == 0
        assert org.suspended is True

    @pytest.mark.asyncio
    async def test_concurrent_settlements_never_go_negative(self, repository):
        await repository.save_organization(Organization(id="o", credit_balance=100))
        ledger = CreditLedger(repository)

        records = await asyncio.gather(*[
            ledger.record_usage("o", 45, reference_id=f"call-{i}") for i in range(5)
        ])

        assert await ledger.get_balance("o") == 0
        assert sum(r.applied for r in records) == 100
        assert all(e.balance_after >= 0 for e in await repository.list_ledger_entries("o"))


class TestTopUpAndRefund:
    """Tests for credits flowing back in"""

    @pytest.mark.asyncio
    async def test_top_up_lifts_credit_suspension(self, repository):
        await repository.save_organization(Organization(
            id="o", credit_balance=0, suspended=True, suspension_reason=CREDIT_EXHAUSTED_REASON
        ))
        ledger = CreditLedger(repository)

        record = await ledger.top_up("o", 500, reference_id="pay-1")

        assert record.balance == 500
        org = await repository.get_organization("o")
        assert org.suspended is False
        assert org.suspension_reason is None

    @pytest.mark.asyncio
    async def test_top_up_keeps_other_suspensions(self, repository):
        await repository.save_organization(Organization(
            id="o", credit_balance=0, suspended=True, suspension_reason="terms_violation"
        ))
        await CreditLedger(repository).top_up("o", 500, reference_id="pay-1")
        org = await repository.get_organization("o")
        assert org.suspended is True
        assert org.suspension_reason == "terms_violation"

    @pytest.mark.asyncio
    async def test_refund_is_idempotent(self, repository, org):
        ledger = CreditLedger(repository)
        await ledger.refund(org.id, 30, reference_id="call-9")
        await ledger.refund(org.id, 30, reference_id="call-9")
        assert await ledger.get_balance(org.id) == 1030


class TestVoiceRates:
    """Tests for rate lookup"""

    @pytest.mark.asyncio
    async def test_falls_back_to_default_rates(self, repository):
        ledger = CreditLedger(repository)
        assert await ledger.get_voice_rate(VoiceTier.BUDGET) == 18
        assert await ledger.get_voice_rate(VoiceTier.STANDARD) == 30
        assert await ledger.get_voice_rate(VoiceTier.PREMIUM) == 35
        assert await ledger.get_voice_rate(VoiceTier.ULTRA) == 40

    @pytest.mark.asyncio
    async def test_configured_rates_override_defaults(self, repository):
        ledger = CreditLedger(repository, default_rates={"voice_standard": 25})
        assert await ledger.get_voice_rate(VoiceTier.STANDARD) == 25

    @pytest.mark.asyncio
    async def test_stored_rate_wins(self, repository):
        repository.set_credit_rate("voice_standard", 50)
        ledger = CreditLedger(repository, default_rates={"voice_standard": 25})
        assert await ledger.get_voice_rate(VoiceTier.STANDARD) == 50
