"""
Campaign Scheduler Worker
Background worker that turns eligible leads into outbound calls

Run as separate process:
    python -m campaign_dialer.workers.scheduler_worker
"""
import asyncio
import logging
import signal
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

from campaign_dialer.container import DialerContainer
from campaign_dialer.core.config import get_config_manager, get_settings
from campaign_dialer.domain.models.campaign import Campaign, CampaignStatus
from campaign_dialer.domain.models.lead import LeadStatus

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class CampaignSchedulerWorker:
    """
    Fixed-tick scheduler.

    Each tick:
    - reaps stale calls (every stale_call_check_interval_seconds), including
      in-progress calls older than max_call_duration_seconds
    - for every active campaign inside its organization's calling window,
      dispatches up to batch_size eligible leads
    - completes campaigns with nothing left to call

    Several workers can run against the same storage; every state change
    they make is a conditional update.
    """

    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(self, container: DialerContainer):
        if container.dispatcher is None:
            raise ValueError("Scheduler worker needs a container with a voice provider")
        self.container = container
        self.repository = container.repository
        self.dispatcher = container.dispatcher
        self.reconciler = container.reconciler
        self.config = container.config
        self._clock = container.clock

        self.running = False
        self._stop_event = asyncio.Event()

        # Stats
        self._ticks = 0
        self._calls_dispatched = 0
        self._dispatch_failures = 0
        self._stale_calls_reaped = 0
        self._campaigns_completed = 0
        self._last_stale_check: Optional[datetime] = None

    async def tick(self) -> int:
        """
        Run one scheduling pass. Returns the number of calls dispatched.
        """
        self._ticks += 1
        now = self._clock()

        if self._stale_check_due(now):
            reaped = await self.reconciler.reap_stale_calls(
                self.config.stale_call_timeout_seconds,
                in_progress_older_than_seconds=self.config.max_call_duration_seconds
            )
            self._stale_calls_reaped += len(reaped)
            self._last_stale_check = now

        dispatched = 0
        blocked_orgs = set()
        campaigns = await self.repository.list_campaigns(status=CampaignStatus.ACTIVE)

        for campaign in campaigns:
            if campaign.organization_id in blocked_orgs:
                continue
            dispatched += await self._process_campaign(campaign, now, blocked_orgs)

        if dispatched:
            logger.info(f"Tick {self._ticks}: dispatched {dispatched} calls across {len(campaigns)} campaigns")
        return dispatched

    async def _process_campaign(self, campaign: Campaign, now: datetime, blocked_orgs: set) -> int:
        org = await self.repository.get_organization(campaign.organization_id)
        if org is None:
            logger.warning(f"Campaign {campaign.id} has no organization {campaign.organization_id}")
            return 0

        can_call, reason = org.calling_window.is_open(now)
        if not can_call:
            logger.debug(
                f"Campaign {campaign.id} skipped: {reason}, "
                f"next opening {org.calling_window.next_opening(now).isoformat()}"
            )
            return 0

        leads = await self.container.state_machine.select_eligible(
            campaign.id, self.config.batch_size, now=now
        )
        if not leads:
            await self._complete_if_finished(campaign)
            return 0

        dispatched = 0
        for lead in leads:
            result = await self.dispatcher.dispatch(lead, campaign, org)
            if result.success:
                dispatched += 1
                self._calls_dispatched += 1
                continue

            self._dispatch_failures += 1
            failure = result.failure
            logger.info(f"Lead {lead.id} not dispatched: {failure.reason}")
            if failure.org_wide:
                blocked_orgs.add(org.id)
                break
            if not failure.retryable:
                # Campaign was paused by the dispatcher
                break

        return dispatched

    async def _complete_if_finished(self, campaign: Campaign) -> None:
        open_leads = await self.repository.count_leads(
            campaign.id,
            [LeadStatus.PENDING, LeadStatus.CALLING, LeadStatus.FAILED]
        )
        if open_leads:
            return
        if await self.repository.count_active_calls(campaign.id):
            return

        completed = await self.repository.transition_campaign_status(
            campaign.id,
            CampaignStatus.ACTIVE,
            CampaignStatus.COMPLETED,
            {"completed_at": self._clock()}
        )
        if completed:
            self._campaigns_completed += 1
            logger.info(f"Campaign {campaign.id} completed - no leads left to call")

    def _stale_check_due(self, now: datetime) -> bool:
        if self._last_stale_check is None:
            return True
        elapsed = (now - self._last_stale_check).total_seconds()
        return elapsed >= self.config.stale_call_check_interval_seconds

    async def run(self) -> None:
        """
        Main worker loop.

        Ticks every tick_interval_seconds until stopped. Errors back off
        and the loop gives up after MAX_CONSECUTIVE_ERRORS in a row.
        """
        self.running = True
        consecutive_errors = 0

        logger.info(
            f"Campaign Scheduler started - tick every {self.config.tick_interval_seconds}s, "
            f"batch size {self.config.batch_size}"
        )

        while self.running:
            try:
                await self.tick()
                consecutive_errors = 0
                await self._sleep(self.config.tick_interval_seconds)

            except asyncio.CancelledError:
                logger.info("Worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, stopping worker")
                    break

                await self._sleep(min(5 * consecutive_errors, 60))

        self.running = False

    async def _sleep(self, seconds: float) -> None:
        """Sleep that ends early when stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def stop(self) -> None:
        self.running = False
        self._stop_event.set()

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        logger.info("Shutting down Campaign Scheduler...")
        self.stop()
        await self.container.close()

        logger.info(
            f"Campaign Scheduler shutdown complete. "
            f"Dispatched: {self._calls_dispatched}, Failed: {self._dispatch_failures}"
        )

    def get_stats(self) -> dict:
        """Get worker statistics."""
        return {
            "running": self.running,
            "ticks": self._ticks,
            "calls_dispatched": self._calls_dispatched,
            "dispatch_failures": self._dispatch_failures,
            "stale_calls_reaped": self._stale_calls_reaped,
            "campaigns_completed": self._campaigns_completed,
        }


async def main():
    """Entry point for running the scheduler as separate process."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = get_config_manager().get_dialer_config()
    worker = CampaignSchedulerWorker(DialerContainer.from_settings(settings, config))

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    finally:
        await worker.shutdown()


def run_worker():
    asyncio.run(main())


if __name__ == "__main__":
    run_worker()
