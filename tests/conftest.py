"""
Shared fixtures: an in-memory store, a protocol config and mocked
chain and price collaborators.
"""

import dataclasses
from contextlib import asynccontextmanager
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from reward_settlement.core.config import (
    ApyTier,
    AssetConfig,
    AssetPriceConfig,
    ChainConfig,
    HubConfig,
    ProtocolConfig,
    RewardConfig,
    StakingRewardConfig,
    TokenStakingReward,
    TokenVolumeReward,
    VolumeRewardConfig,
)
from reward_settlement.services.chain_reader import ChainReader
from reward_settlement.services.rewards.types import (
    DomainVote,
    LockPosition,
    MerkleTreeRecord,
    NewLockPositionEvent,
    SettledIntent,
)


CLEAR = "0x" + "c1" * 20
USDC = "0x" + "a0" * 20
WETH = "0x" + "e7" * 20

ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20
CAROL = "0x" + "33" * 20

WEEK = 7 * 24 * 60 * 60
GENESIS = 1_700_000_000


def initiator_word(address: str) -> str:
    """32-byte left padded form of an address."""
    return "0x" + "0" * 24 + address[2:]


class InMemoryRewardsStore:
    """Dict backed stand-in for RewardsRepository."""

    def __init__(self):
        self.checkpoints: Dict[str, int] = {}
        self.events: List[NewLockPositionEvent] = []
        self.positions: Dict[tuple, LockPosition] = {}
        self.votes: Dict[int, List[DomainVote]] = {}
        self.intents: Dict[str, List[SettledIntent]] = {}
        self.merkle_trees: List[MerkleTreeRecord] = []
        self.epoch_results: list = []
        self.rewards: list = []
        self.writes: List[str] = []

    @asynccontextmanager
    async def transaction(self):
        yield None
        self.writes.append("commit")

    async def get_checkpoint(self, check_name: str, session=None) -> int:
        return self.checkpoints.get(check_name, 0)

    async def save_checkpoint(self, check_name: str, point: int, session=None) -> None:
        self.checkpoints[check_name] = point
        self.writes.append(f"checkpoint:{check_name}")

    async def get_new_lock_position_events(self, vid_from: int, limit: int = 100, session=None):
        events = sorted((e for e in self.events if e.vid > vid_from), key=lambda e: e.vid)
        return [dataclasses.replace(e) for e in events[:limit]]

    async def get_lock_positions(
        self,
        user: Optional[str] = None,
        expiry_from: Optional[int] = None,
        start_before: Optional[int] = None,
        session=None
    ) -> List[LockPosition]:
        positions = [
            p for p in self.positions.values()
            if (user is None or p.user == user)
            and (expiry_from is None or p.expiry > expiry_from)
            and (start_before is None or p.start < start_before)
        ]
        return [dataclasses.replace(p) for p in sorted(positions, key=lambda p: (p.start, p.user))]

    async def save_lock_positions(self, check_name: str, point: int, lock_positions, session=None) -> None:
        self.checkpoints[check_name] = point
        for position in lock_positions:
            key = (position.user, position.start)
            if position.amount_locked == 0:
                self.positions.pop(key, None)
            else:
                self.positions[key] = dataclasses.replace(position)
        self.writes.append(f"lock_positions:{point}")

    async def get_votes(self, epoch: int, session=None) -> List[DomainVote]:
        return list(self.votes.get(epoch, []))

    async def get_settled_intents_in_epoch(self, domain: str, from_timestamp: int, to_timestamp: int, session=None):
        return {
            intent.intent_id: intent
            for intent in self.intents.get(domain, [])
            if from_timestamp <= intent.settlement_timestamp < to_timestamp
        }

    async def get_merkle_trees(self, epoch_end: int, session=None) -> List[MerkleTreeRecord]:
        return [tree for tree in self.merkle_trees if tree.epoch_end_timestamp == epoch_end]

    async def save_merkle_trees(self, trees, session=None) -> None:
        self.merkle_trees.extend(trees)
        self.writes.append("merkle_trees")

    async def save_epoch_results(self, epoch_results, session=None) -> None:
        self.epoch_results.extend(epoch_results)
        self.writes.append("epoch_results")

    async def save_rewards(self, rewards, session=None) -> None:
        self.rewards.extend(rewards)
        self.writes.append("rewards")

    # helpers for test setup

    def add_event(self, vid: int, user: str, amount: int, block_timestamp: int, expiry: int) -> None:
        self.events.append(NewLockPositionEvent(vid, user, amount, block_timestamp, expiry))

    def add_position(self, user: str, amount: int, start: int, expiry: int) -> None:
        self.positions[(user, start)] = LockPosition(user, amount, start, expiry)

    def add_intent(self, domain: str, initiator: str, asset: str, amount: int, timestamp: int) -> None:
        intents = self.intents.setdefault(domain, [])
        intents.append(
            SettledIntent(
                intent_id=f"0x{domain}{len(intents):062x}",
                initiator=initiator_word(initiator),
                origin_domain="1",
                settlement_domain=domain,
                settlement_asset=asset,
                settlement_amount=amount,
                settlement_timestamp=timestamp,
            )
        )


@pytest.fixture
def store():
    return InMemoryRewardsStore()


@pytest.fixture
def prices():
    """USD price per asset symbol, mutable per test."""
    return {"CLEAR": 0.5, "USDC": 1.0, "WETH": 2000.0}


@pytest.fixture
def price_oracle(prices):
    oracle = AsyncMock()
    oracle.get_historic_token_price.side_effect = lambda asset, date: prices[asset.symbol]
    return oracle


@pytest.fixture
def chain():
    reader = AsyncMock(spec=ChainReader)
    reader.get_epoch_duration.return_value = WEEK
    reader.get_genesis_epoch.return_value = GENESIS
    reader.get_reward_distributor_update_count.return_value = 3
    return reader


def make_config(
    volume_tokens: Optional[List[TokenVolumeReward]] = None,
    staking_tokens: Optional[List[TokenStakingReward]] = None,
) -> ProtocolConfig:
    clear = AssetConfig(symbol="CLEAR", address=CLEAR, decimals=18, price=AssetPriceConfig(coingecko_id="clear"))
    usdc = AssetConfig(symbol="USDC", address=USDC, decimals=6, price=AssetPriceConfig(coingecko_id="usd-coin", is_stable=True))
    weth = AssetConfig(symbol="WETH", address=WETH, decimals=18, price=AssetPriceConfig(coingecko_id="weth"))

    return ProtocolConfig(
        hub=HubConfig(domain="25327", assets={"CLEAR": clear, "USDC": usdc, "WETH": weth}),
        chains={
            "1": ChainConfig(assets={"USDC": usdc, "WETH": weth}),
            "10": ChainConfig(assets={"USDC": usdc}),
        },
        rewards=RewardConfig(
            clear_asset_address=CLEAR,
            volume=VolumeRewardConfig(tokens=volume_tokens if volume_tokens is not None else []),
            staking=StakingRewardConfig(tokens=staking_tokens if staking_tokens is not None else []),
        ),
    )


def clear_staking(apy: Optional[List[ApyTier]] = None) -> TokenStakingReward:
    return TokenStakingReward(
        address=CLEAR,
        apy=apy if apy is not None else [ApyTier(term=0, apy_bps=500), ApyTier(term=3, apy_bps=1000)],
    )


def clear_volume(
    epoch_volume_reward: int = 100_000 * 10 ** 18,
    base_reward_dbps: int = 10,
    max_bps_usd_volume_cap: int = 50_000_000,
) -> TokenVolumeReward:
    return TokenVolumeReward(
        address=CLEAR,
        epoch_volume_reward=epoch_volume_reward,
        base_reward_dbps=base_reward_dbps,
        max_bps_usd_volume_cap=max_bps_usd_volume_cap,
    )


@pytest.fixture
def config():
    return make_config(volume_tokens=[clear_volume()], staking_tokens=[clear_staking()])
