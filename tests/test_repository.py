"""
Tests for the rewards repository against a SQLite database.
"""

import pytest
from sqlalchemy import select

from reward_settlement.core.database import DatabaseManager, close_database, get_async_session, init_database
from reward_settlement.models import (
    EpochResult,
    Intent,
    IntentStatus,
    NewLockPositionEvent as NewLockPositionEventRow,
    Reward,
    VoteCast,
)
from reward_settlement.services.rewards.database import RewardsRepository
from reward_settlement.services.rewards.types import (
    DomainVote,
    EpochResultRecord,
    LockPosition,
    MerkleTreeRecord,
    RewardRecord,
)

from conftest import ALICE, BOB, CLEAR, USDC, initiator_word


@pytest.fixture
async def repository(tmp_path):
    await init_database(f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}")
    await DatabaseManager.create_tables()
    yield RewardsRepository()
    await close_database()


def intent(intent_id, status=IntentStatus.SETTLED, domain="1", timestamp=1000, amount="5000000"):
    return Intent(
        id=intent_id,
        initiator=initiator_word(ALICE),
        origin_domain="10",
        origin_timestamp=timestamp - 60,
        settlement_domain=domain,
        settlement_asset=USDC,
        settlement_amount=amount,
        settlement_timestamp=timestamp,
        settlement_status=status,
    )


@pytest.mark.asyncio
async def test_checkpoint_defaults_to_zero_and_upserts(repository):
    assert await repository.get_checkpoint("rewards_epoch") == 0

    await repository.save_checkpoint("rewards_epoch", 100)
    await repository.save_checkpoint("rewards_epoch", 200)

    assert await repository.get_checkpoint("rewards_epoch") == 200


@pytest.mark.asyncio
async def test_new_lock_position_events_after_vid(repository):
    async with get_async_session() as session:
        session.add_all([
            NewLockPositionEventRow(vid=vid, user=ALICE, new_total_amount_locked=str(vid * 10 ** 30), block_timestamp=vid, expiry=vid + 10)
            for vid in (3, 1, 2, 4)
        ])

    events = await repository.get_new_lock_position_events(1, limit=2)

    assert [event.vid for event in events] == [2, 3]
    assert events[0].new_total_amount_locked == 2 * 10 ** 30


@pytest.mark.asyncio
async def test_save_lock_positions_upserts_and_deletes(repository):
    await repository.save_lock_positions("vid", 5, [
        LockPosition(ALICE, 100, 10, 500),
        LockPosition(ALICE, 50, 20, 500),
        LockPosition(BOB, 70, 15, 400),
    ])
    await repository.save_lock_positions("vid", 6, [
        LockPosition(ALICE, 0, 10, 600),
        LockPosition(ALICE, 80, 20, 600),
    ])

    assert await repository.get_checkpoint("vid") == 6
    assert await repository.get_lock_positions(user=ALICE) == [LockPosition(ALICE, 80, 20, 600)]
    assert await repository.get_lock_positions() == [
        LockPosition(BOB, 70, 15, 400),
        LockPosition(ALICE, 80, 20, 600),
    ]


@pytest.mark.asyncio
async def test_lock_position_filters_are_strict(repository):
    await repository.save_lock_positions("vid", 1, [
        LockPosition(ALICE, 1, 100, 1000),
        LockPosition(BOB, 1, 200, 2000),
    ])

    assert await repository.get_lock_positions(expiry_from=1000) == [LockPosition(BOB, 1, 200, 2000)]
    assert await repository.get_lock_positions(start_before=200) == [LockPosition(ALICE, 1, 100, 1000)]


@pytest.mark.asyncio
async def test_votes_are_summed_per_domain(repository):
    async with get_async_session() as session:
        session.add_all([
            VoteCast(epoch=7, domain="10", user=ALICE, votes="5"),
            VoteCast(epoch=7, domain="1", user=ALICE, votes=str(10 ** 30)),
            VoteCast(epoch=7, domain="1", user=BOB, votes="2"),
            VoteCast(epoch=8, domain="1", user=BOB, votes="100"),
        ])

    assert await repository.get_votes(7) == [DomainVote("1", 10 ** 30 + 2), DomainVote("10", 5)]
    assert await repository.get_votes(9) == []


@pytest.mark.asyncio
async def test_settled_intents_in_window(repository):
    async with get_async_session() as session:
        session.add_all([
            intent("0x01", timestamp=1000),
            intent("0x02", timestamp=1999),
            intent("0x03", timestamp=2000),
            intent("0x04", timestamp=999),
            intent("0x05", status=IntentStatus.DISPATCHED, timestamp=1500),
            intent("0x06", domain="10", timestamp=1500),
        ])

    intents = await repository.get_settled_intents_in_epoch("1", 1000, 2000)

    assert list(intents) == ["0x01", "0x02"]
    assert intents["0x01"].settlement_amount == 5_000_000
    assert intents["0x01"].initiator_address == ALICE


@pytest.mark.asyncio
async def test_merkle_trees_by_epoch_end(repository):
    trees = [
        MerkleTreeRecord(asset=CLEAR, root="0x" + "01" * 32, proof="0x" + "02" * 32, epoch_end_timestamp=100, merkle_tree="{}"),
        MerkleTreeRecord(asset=USDC, root="0x" + "03" * 32, proof="0x" + "04" * 32, epoch_end_timestamp=200, merkle_tree="{}"),
    ]
    await repository.save_merkle_trees(trees)

    assert await repository.get_merkle_trees(100) == [trees[0]]
    assert await repository.get_merkle_trees(150) == []


@pytest.mark.asyncio
async def test_settlement_rows_share_transaction(repository):
    async with repository.transaction() as session:
        await repository.save_epoch_results([
            EpochResultRecord(ALICE, "1", 10 ** 12, 4 * 10 ** 12, 200 * 10 ** 18, 300 * 10 ** 18, 100)
        ], session=session)
        await repository.save_rewards([
            RewardRecord(ALICE, CLEAR, "0x" + "01" * 32, ["0x" + "05" * 32], 1000, 10 ** 20, 10 ** 24, 200 * 10 ** 18, 300 * 10 ** 18, 100)
        ], session=session)
        await repository.save_checkpoint("rewards_epoch", 100, session=session)

    async with get_async_session() as session:
        reward = (await session.execute(select(Reward))).scalar_one()
        epoch_result = (await session.execute(select(EpochResult))).scalar_one()

    assert reward.cumulative_rewards == str(300 * 10 ** 18)
    assert reward.proof == ["0x" + "05" * 32]
    assert epoch_result.total_volume == str(4 * 10 ** 12)
    assert await repository.get_checkpoint("rewards_epoch") == 100


@pytest.mark.asyncio
async def test_failed_transaction_rolls_back(repository):
    with pytest.raises(RuntimeError):
        async with repository.transaction() as session:
            await repository.save_checkpoint("rewards_epoch", 100, session=session)
            raise RuntimeError("abort")

    assert await repository.get_checkpoint("rewards_epoch") == 0


@pytest.mark.asyncio
async def test_health_check(repository):
    assert await DatabaseManager.health_check() is True
