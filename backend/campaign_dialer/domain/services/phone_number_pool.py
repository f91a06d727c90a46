"""
Phone Number Pool
Picks the originating number for a call within per-number hourly/daily caps
"""
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from campaign_dialer.domain.interfaces.orchestrator_repository import OrchestratorRepository
from campaign_dialer.domain.models.phone_number import PhoneNumber
from campaign_dialer.utils.clock import ensure_utc, utc_now

logger = logging.getLogger(__name__)

_NEVER_USED = datetime.min.replace(tzinfo=timezone.utc)


class PhoneNumberPool:
    """
    Least-recently-used number selection.

    A number is claimed by a compare-and-set on its usage counters, so two
    workers racing for the same number cannot both push it past its cap.
    The loser moves on to the next candidate.
    """

    def __init__(
        self,
        repository: OrchestratorRepository,
        clock: Callable[[], datetime] = utc_now
    ):
        self.repository = repository
        self._clock = clock

    async def acquire_number(
        self,
        organization_id: str,
        now: Optional[datetime] = None,
        pinned_id: Optional[str] = None
    ) -> Optional[PhoneNumber]:
        """
        Claim one unit of usage on an eligible number.

        Returns None when every candidate is at its limit. That is
        backpressure, not an error.
        """
        now = ensure_utc(now) or self._clock()

        candidates = await self._candidates(organization_id, pinned_id)
        eligible = [n for n in candidates if n.is_eligible(now)]
        eligible.sort(key=lambda n: (
            n.last_used_at is not None,
            ensure_utc(n.last_used_at) or _NEVER_USED,
        ))

        for number in eligible:
            claimed = number.with_usage(now)
            if await self.repository.compare_and_set_phone_usage(number, claimed):
                hour_count, day_count = claimed.effective_counts(now)
                logger.debug(
                    f"Acquired number {number.number} for org {organization_id} "
                    f"({hour_count}/{number.max_calls_per_hour} this hour, "
                    f"{day_count}/{number.max_calls_per_day} today)"
                )
                return claimed
            logger.debug(f"Lost race for number {number.id}, trying next candidate")

        logger.info(f"No phone number available for org {organization_id}")
        return None

    async def release_number(self, phone_number_id: str, now: Optional[datetime] = None) -> None:
        """Give back the usage taken by an aborted dispatch."""
        await self.repository.release_phone_usage(phone_number_id, ensure_utc(now) or self._clock())

    async def _candidates(self, organization_id: str, pinned_id: Optional[str]) -> List[PhoneNumber]:
        if pinned_id:
            pinned = await self.repository.get_phone_number(pinned_id)
            if pinned is None or pinned.organization_id != organization_id:
                logger.warning(f"Pinned number {pinned_id} not found for org {organization_id}")
                return []
            return [pinned]
        return await self.repository.list_phone_numbers(organization_id)
