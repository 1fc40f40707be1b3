"""
Rewards scheduler.

Runs the rewards processor every `scheduler_interval` seconds. A run that
finds the next epoch not final yet is a no-op, so polling is safe; runs never
overlap.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from reward_settlement.core.config import settings
from reward_settlement.services.rewards import EpochSettlement, RewardsProcessor, get_rewards_processor


logger = structlog.get_logger(__name__)


class SchedulerStatus(Enum):
    """Status of the rewards scheduler."""
    STOPPED = "stopped"
    WAITING = "waiting"
    PROCESSING = "processing"
    ERROR = "error"


@dataclass
class SchedulerStats:
    """Statistics for scheduler operations."""
    last_run: Optional[datetime] = None
    last_settled_epoch: Optional[int] = None
    total_runs: int = 0
    settled_epochs: int = 0
    failed_runs: int = 0
    last_error: Optional[str] = None
    uptime_start: Optional[datetime] = None


class RewardsScheduler:
    """Polls the rewards processor, one run at a time."""

    def __init__(
        self,
        processor: Optional[RewardsProcessor] = None,
        interval: Optional[int] = None,
        enabled: Optional[bool] = None,
    ):
        self.logger = logger.bind(service="rewards_scheduler")
        self._processor = processor
        self.interval = interval if interval is not None else settings.scheduler_interval
        self.enabled = enabled if enabled is not None else settings.scheduler_enabled

        self.status = SchedulerStatus.STOPPED
        self.stats = SchedulerStats(uptime_start=datetime.now(timezone.utc))
        self._should_stop = False
        self._scheduler_task: Optional[asyncio.Task] = None
        self._run_lock = asyncio.Lock()

        self.logger.info("Rewards scheduler initialized", enabled=self.enabled, interval=self.interval)

    @property
    def processor(self) -> RewardsProcessor:
        if self._processor is None:
            self._processor = get_rewards_processor()
        return self._processor

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self):
        """Start the scheduler loop."""
        if not self.enabled:
            self.logger.info("Rewards scheduler is disabled")
            return

        if self.status != SchedulerStatus.STOPPED:
            self.logger.warning("Scheduler already running", current_status=self.status.value)
            return

        self._should_stop = False
        self.status = SchedulerStatus.WAITING
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())
        self.logger.info("Rewards scheduler started")

    async def stop(self):
        """Stop the scheduler loop, an in-flight run is cancelled."""
        if self.status == SchedulerStatus.STOPPED:
            return

        self.logger.info("Stopping rewards scheduler")
        self._should_stop = True

        if self._scheduler_task and not self._scheduler_task.done():
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass

        self.status = SchedulerStatus.STOPPED
        self.logger.info("Rewards scheduler stopped")

    async def _scheduler_loop(self):
        self.logger.info("Scheduler loop started")

        while not self._should_stop:
            try:
                await self.run_once()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                self.logger.info("Scheduler loop cancelled")
                break

        self.logger.info("Scheduler loop stopped")

    async def run_once(self) -> Optional[EpochSettlement]:
        """
        Run the processor once. Errors are logged and counted, not raised.

        Returns:
            EpochSettlement when an epoch was settled, None otherwise
        """
        if self._run_lock.locked():
            self.logger.warning("Rewards run already in progress, skipping")
            return None

        async with self._run_lock:
            self.status = SchedulerStatus.PROCESSING
            self.stats.total_runs += 1
            self.stats.last_run = datetime.now(timezone.utc)

            try:
                settlement = await self.processor.process_rewards()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.failed_runs += 1
                self.stats.last_error = str(e)
                self.status = SchedulerStatus.ERROR
                self.logger.error(
                    "Rewards run failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    total_runs=self.stats.total_runs,
                    failed_runs=self.stats.failed_runs
                )
                return None

            if settlement:
                self.stats.settled_epochs += 1
                self.stats.last_settled_epoch = settlement.epoch
                self.stats.last_error = None
            self.status = SchedulerStatus.WAITING
            return settlement

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status."""
        stats = asdict(self.stats)
        for key in ("last_run", "uptime_start"):
            if stats[key]:
                stats[key] = stats[key].isoformat()
        return {
            "status": self.status.value,
            "enabled": self.enabled,
            "interval": self.interval,
            "stats": stats,
        }


# Global scheduler instance
_rewards_scheduler: Optional[RewardsScheduler] = None


def get_rewards_scheduler() -> RewardsScheduler:
    """Get or create global RewardsScheduler instance."""
    global _rewards_scheduler
    if _rewards_scheduler is None:
        _rewards_scheduler = RewardsScheduler()
    return _rewards_scheduler
