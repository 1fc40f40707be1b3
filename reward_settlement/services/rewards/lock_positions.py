"""
Lock position reconciliation.

Each new lock position event carries the latest state of a user's lock: the
total amount locked and the latest expiry. Comparing it with the stored total:

- a greater amount is an increase, the difference becomes a new cohort
  starting at the event block (or is added to the cohort already starting
  there);
- the same amount is an extension of the lock period;
- a smaller amount is an early exit, cohorts are consumed oldest first until
  the remaining total matches.

In every case all cohorts of the user take the event expiry. The tokenomics
contract guarantees expiries never decrease.
"""

from typing import Dict, List, Optional

import structlog

from reward_settlement.core.config import settings
from reward_settlement.core.exceptions import NewLockPositionZero
from .constants import NEW_LOCK_POSITIONS_CHECKPOINT
from .database import RewardsRepository
from .types import LockPosition, NewLockPositionEvent


logger = structlog.get_logger(__name__)


class LockPositionProcessor:
    """Splits raw lock events into per-user lock cohorts."""

    def __init__(self, store: Optional[RewardsRepository] = None):
        self.store = store or RewardsRepository()
        self.logger = logger.bind(service="lock_position_processor")

    async def process_new_lock_positions(self, limit: Optional[int] = None) -> int:
        """
        Reconcile the next batch of lock events after the stored checkpoint.

        Args:
            limit: Maximum number of events to read

        Returns:
            Number of events processed, 0 when none are left
        """
        limit = limit or settings.lock_positions_batch_size
        vid = await self.store.get_checkpoint(NEW_LOCK_POSITIONS_CHECKPOINT)
        events = await self.store.get_new_lock_position_events(vid, limit)
        if not events:
            return 0

        self.logger.info("Processing new lock positions", since_vid=vid, count=len(events))

        lock_positions: Dict[str, List[LockPosition]] = {}
        total_stakes: Dict[str, int] = {}

        for event in events:
            user = event.user
            if user not in lock_positions:
                stored = await self.store.get_lock_positions(user=user)
                if not stored:
                    # First lock ever, or everything was withdrawn earlier
                    if event.new_total_amount_locked == 0:
                        self.logger.error("Invalid new lock position", user=user, vid=event.vid)
                        raise NewLockPositionZero({"user": user, "vid": event.vid})

                    lock_positions[user] = [
                        LockPosition(
                            user=user,
                            amount_locked=event.new_total_amount_locked,
                            start=event.block_timestamp,
                            expiry=event.expiry,
                        )
                    ]
                    total_stakes[user] = event.new_total_amount_locked
                    continue

                lock_positions[user] = stored
                total_stakes[user] = sum(position.amount_locked for position in stored)

            user_positions = lock_positions[user]
            user_total_stake = total_stakes[user]

            if event.new_total_amount_locked > user_total_stake:
                self._apply_increase(user_positions, event, event.new_total_amount_locked - user_total_stake)
            elif event.new_total_amount_locked < user_total_stake:
                self._apply_exit(user_positions, user_total_stake - event.new_total_amount_locked)

            for position in user_positions:
                position.expiry = event.expiry

            total_stakes[user] = event.new_total_amount_locked

        last_vid = events[-1].vid
        await self.store.save_lock_positions(
            NEW_LOCK_POSITIONS_CHECKPOINT,
            last_vid,
            [position for positions in lock_positions.values() for position in positions],
        )

        self.logger.info(
            "New lock positions processed",
            count=len(events),
            users=len(lock_positions),
            last_vid=last_vid
        )
        return len(events)

    async def drain_new_lock_positions(self, limit: Optional[int] = None) -> int:
        """Process batches until no events are left, returns the total processed."""
        total = 0
        while True:
            count = await self.process_new_lock_positions(limit)
            if count == 0:
                break
            total += count
        return total

    @staticmethod
    def _apply_increase(positions: List[LockPosition], event: NewLockPositionEvent, amount: int) -> None:
        for position in positions:
            if position.start == event.block_timestamp:
                position.amount_locked += amount
                return

        positions.append(
            LockPosition(
                user=event.user,
                amount_locked=amount,
                start=event.block_timestamp,
                expiry=event.expiry,
            )
        )

    @staticmethod
    def _apply_exit(positions: List[LockPosition], amount: int) -> None:
        remaining = amount
        for position in positions:
            if remaining == 0:
                break
            if remaining >= position.amount_locked:
                remaining -= position.amount_locked
                position.amount_locked = 0
            else:
                position.amount_locked -= remaining
                remaining = 0
