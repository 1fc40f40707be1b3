"""
Repository for reward pipeline database operations.

Every method takes an optional session so a caller can group several writes
into one transaction (see `transaction()`); without one, each call runs in
its own committed session.
"""

from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, List, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reward_settlement.core.database import get_async_session
from reward_settlement.core.exceptions import DatabaseError
from reward_settlement.models import (
    Checkpoint,
    EpochResult,
    Intent,
    IntentStatus,
    LockPosition as LockPositionRow,
    MerkleTree,
    NewLockPositionEvent as NewLockPositionEventRow,
    Reward,
    VoteCast,
)
from ..types import (
    DomainVote,
    EpochResultRecord,
    LockPosition,
    MerkleTreeRecord,
    NewLockPositionEvent,
    RewardRecord,
    SettledIntent,
)


logger = structlog.get_logger(__name__)


class RewardsRepository:
    """
    Relational store for the reward pipeline: checkpoints, tokenomics inputs
    and settlement outputs.
    """

    def __init__(self):
        self.logger = logger.bind(service="rewards_repository")

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """Session committed on exit, rolled back on error."""
        async with get_async_session() as session:
            yield session

    @asynccontextmanager
    async def _use_session(self, session: Optional[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
        if session is not None:
            yield session
        else:
            async with get_async_session() as db:
                yield db

    # =========================================================================
    # CHECKPOINTS
    # =========================================================================

    async def get_checkpoint(self, check_name: str, session: Optional[AsyncSession] = None) -> int:
        async with self._use_session(session) as db:
            row = await db.get(Checkpoint, check_name)
            return row.check_point if row else 0

    async def save_checkpoint(self, check_name: str, point: int, session: Optional[AsyncSession] = None) -> None:
        try:
            async with self._use_session(session) as db:
                await db.merge(Checkpoint(check_name=check_name, check_point=point))
                await db.flush()
        except SQLAlchemyError as e:
            self.logger.error("Failed to save checkpoint", check_name=check_name, point=point, error=str(e))
            raise DatabaseError("Failed to save checkpoint", {"check_name": check_name, "point": point}) from e

    # =========================================================================
    # LOCK POSITIONS
    # =========================================================================

    async def get_new_lock_position_events(
        self,
        vid_from: int,
        limit: int = 100,
        session: Optional[AsyncSession] = None
    ) -> List[NewLockPositionEvent]:
        async with self._use_session(session) as db:
            result = await db.execute(
                select(NewLockPositionEventRow)
                .where(NewLockPositionEventRow.vid > vid_from)
                .order_by(NewLockPositionEventRow.vid.asc())
                .limit(limit)
            )
            return [
                NewLockPositionEvent(
                    vid=row.vid,
                    user=row.user,
                    new_total_amount_locked=int(row.new_total_amount_locked),
                    block_timestamp=row.block_timestamp,
                    expiry=row.expiry,
                )
                for row in result.scalars().all()
            ]

    async def get_lock_positions(
        self,
        user: Optional[str] = None,
        expiry_from: Optional[int] = None,
        start_before: Optional[int] = None,
        session: Optional[AsyncSession] = None
    ) -> List[LockPosition]:
        """
        Lock cohorts ordered by start.

        Args:
            user: Only this user's cohorts
            expiry_from: Only cohorts expiring strictly after this timestamp
            start_before: Only cohorts starting strictly before this timestamp
        """
        query = select(LockPositionRow)
        if user is not None:
            query = query.where(LockPositionRow.user == user)
        if expiry_from is not None:
            query = query.where(LockPositionRow.expiry > expiry_from)
        if start_before is not None:
            query = query.where(LockPositionRow.start < start_before)
        query = query.order_by(LockPositionRow.start.asc(), LockPositionRow.user.asc())

        async with self._use_session(session) as db:
            result = await db.execute(query)
            return [
                LockPosition(
                    user=row.user,
                    amount_locked=int(row.amount_locked),
                    start=row.start,
                    expiry=row.expiry,
                )
                for row in result.scalars().all()
            ]

    async def save_lock_positions(
        self,
        check_name: str,
        point: int,
        lock_positions: List[LockPosition],
        session: Optional[AsyncSession] = None
    ) -> None:
        """
        Atomically move the checkpoint and replace the given cohorts.
        Zero-amount cohorts are deleted, the rest upserted on (user, start).
        """
        try:
            async with self._use_session(session) as db:
                await db.merge(Checkpoint(check_name=check_name, check_point=point))
                for position in lock_positions:
                    if position.amount_locked == 0:
                        await db.execute(
                            delete(LockPositionRow)
                            .where(LockPositionRow.user == position.user)
                            .where(LockPositionRow.start == position.start)
                        )
                    else:
                        await db.merge(LockPositionRow(
                            user=position.user,
                            start=position.start,
                            amount_locked=str(position.amount_locked),
                            expiry=position.expiry,
                        ))
                await db.flush()
        except SQLAlchemyError as e:
            self.logger.error(
                "Failed to save lock positions",
                check_name=check_name,
                point=point,
                positions=len(lock_positions),
                error=str(e)
            )
            raise DatabaseError("Failed to save lock positions", {"check_name": check_name, "point": point}) from e

    # =========================================================================
    # VOLUME INPUTS
    # =========================================================================

    async def get_votes(self, epoch: int, session: Optional[AsyncSession] = None) -> List[DomainVote]:
        """Votes cast in the epoch summed per domain."""
        async with self._use_session(session) as db:
            result = await db.execute(
                select(VoteCast.domain, VoteCast.votes).where(VoteCast.epoch == epoch)
            )
            totals: Dict[str, int] = defaultdict(int)
            for domain, votes in result.all():
                totals[domain] += int(votes)
            return [DomainVote(domain=domain, votes=votes) for domain, votes in sorted(totals.items())]

    async def get_settled_intents_in_epoch(
        self,
        domain: str,
        from_timestamp: int,
        to_timestamp: int,
        session: Optional[AsyncSession] = None
    ) -> Dict[str, SettledIntent]:
        """Intents settled on `domain` with settlement time in [from, to)."""
        async with self._use_session(session) as db:
            result = await db.execute(
                select(Intent)
                .where(Intent.settlement_status == IntentStatus.SETTLED)
                .where(Intent.settlement_domain == domain)
                .where(Intent.settlement_timestamp >= from_timestamp)
                .where(Intent.settlement_timestamp < to_timestamp)
                .order_by(Intent.id.asc())
            )
            return {
                row.id: SettledIntent(
                    intent_id=row.id,
                    initiator=row.initiator,
                    origin_domain=row.origin_domain,
                    settlement_domain=row.settlement_domain,
                    settlement_asset=row.settlement_asset,
                    settlement_amount=int(row.settlement_amount),
                    settlement_timestamp=row.settlement_timestamp,
                )
                for row in result.scalars().all()
            }

    # =========================================================================
    # SETTLEMENT OUTPUTS
    # =========================================================================

    async def get_merkle_trees(self, epoch_end: int, session: Optional[AsyncSession] = None) -> List[MerkleTreeRecord]:
        """Trees of the epoch ending at `epoch_end`, i.e. the previous epoch of one starting there."""
        async with self._use_session(session) as db:
            result = await db.execute(
                select(MerkleTree)
                .where(MerkleTree.epoch_end_timestamp == epoch_end)
                .order_by(MerkleTree.id.asc())
            )
            return [
                MerkleTreeRecord(
                    asset=row.asset,
                    root=row.root,
                    proof=row.proof,
                    epoch_end_timestamp=row.epoch_end_timestamp,
                    merkle_tree=row.merkle_tree,
                )
                for row in result.scalars().all()
            ]

    async def save_merkle_trees(self, trees: List[MerkleTreeRecord], session: Optional[AsyncSession] = None) -> None:
        try:
            async with self._use_session(session) as db:
                db.add_all([
                    MerkleTree(
                        asset=tree.asset,
                        root=tree.root,
                        proof=tree.proof,
                        epoch_end_timestamp=tree.epoch_end_timestamp,
                        merkle_tree=tree.merkle_tree,
                    )
                    for tree in trees
                ])
                await db.flush()
        except SQLAlchemyError as e:
            self.logger.error("Failed to save merkle trees", count=len(trees), error=str(e))
            raise DatabaseError("Failed to save merkle trees", {"count": len(trees)}) from e

    async def save_epoch_results(
        self,
        epoch_results: List[EpochResultRecord],
        session: Optional[AsyncSession] = None
    ) -> None:
        try:
            async with self._use_session(session) as db:
                db.add_all([
                    EpochResult(
                        account=result.account,
                        domain=result.domain,
                        user_volume=str(result.user_volume),
                        total_volume=str(result.total_volume),
                        clear_emissions=str(result.clear_emissions),
                        cumulative_rewards=str(result.cumulative_rewards),
                        epoch_timestamp=result.epoch_timestamp,
                    )
                    for result in epoch_results
                ])
                await db.flush()
        except SQLAlchemyError as e:
            self.logger.error("Failed to save epoch results", count=len(epoch_results), error=str(e))
            raise DatabaseError("Failed to save epoch results", {"count": len(epoch_results)}) from e

    async def save_rewards(self, rewards: List[RewardRecord], session: Optional[AsyncSession] = None) -> None:
        try:
            async with self._use_session(session) as db:
                db.add_all([
                    Reward(
                        account=reward.account,
                        asset=reward.asset,
                        merkle_root=reward.merkle_root,
                        proof=reward.proof,
                        stake_apy=str(reward.stake_apy),
                        stake_rewards=str(reward.stake_rewards),
                        total_clear_staked=str(reward.total_clear_staked),
                        protocol_rewards=str(reward.protocol_rewards),
                        cumulative_rewards=str(reward.cumulative_rewards),
                        epoch_timestamp=reward.epoch_timestamp,
                    )
                    for reward in rewards
                ])
                await db.flush()
        except SQLAlchemyError as e:
            self.logger.error("Failed to save rewards", count=len(rewards), error=str(e))
            raise DatabaseError("Failed to save rewards", {"count": len(rewards)}) from e
