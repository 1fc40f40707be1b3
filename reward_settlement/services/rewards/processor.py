"""
Rewards processor: settles one epoch per run.

Pipeline:
1. Drain new lock position events into lock cohorts
2. Pick the next epoch after the checkpoint, wait until it is final
3. Run the volume and staking calculators and merge their distributions
4. Add the cumulative rewards of the previous epoch trees
5. Build one Merkle tree per reward asset and the account proofs
6. Persist trees, epoch results and rewards, then the epoch checkpoint

Everything of an epoch is written in one transaction with the checkpoint
last, so a failed run leaves the epoch to be recomputed from scratch.
"""

import json
import time
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from eth_utils import encode_hex, keccak

from reward_settlement.core.config import ProtocolConfig, load_protocol_config
from reward_settlement.core.exceptions import InvalidAddressProof, InvalidState, RewardsError
from ..chain_reader import ChainReader
from ..historic_price import HistoricPrice
from .constants import REWARDS_EPOCH_CHECKPOINT, ZERO_ADDRESS
from .database import RewardsRepository
from .lock_positions import LockPositionProcessor
from .merkle import StandardMerkleTree
from .staking import StakingRewardCalculator
from .types import (
    EpochResultRecord,
    EpochSettlement,
    MerkleTreeRecord,
    ProcessorStatus,
    RewardDistributions,
    RewardRecord,
    StakingRewardsResult,
    VolumeRewardsResult,
)
from .volume import VolumeRewardCalculator


logger = structlog.get_logger(__name__)

LEAF_ENCODING = ["address", "uint256"]


def merge_distributions(*distributions: RewardDistributions) -> RewardDistributions:
    """Sum reward distributions per (asset, account); assets without accounts are kept."""
    merged: RewardDistributions = {}
    for distribution in distributions:
        for asset, accounts in distribution.items():
            asset_rewards = merged.setdefault(asset, {})
            for account, amount in accounts.items():
                asset_rewards[account] = asset_rewards.get(account, 0) + amount
    return merged


def distribution_proof(asset: str, root: str, epoch: int, update_count: int) -> str:
    """Anchor binding a tree root to the distribution start and the on-chain update count."""
    metadata = json.dumps({"timestamp": epoch, "updateCount": update_count}, separators=(",", ":"))
    return encode_hex(keccak(text=f"{asset}{root}{metadata}"))


class RewardsProcessor:
    """Epoch settlement of volume and staking rewards into cumulative Merkle trees."""

    def __init__(
        self,
        config: Optional[ProtocolConfig] = None,
        store: Optional[RewardsRepository] = None,
        chain: Optional[ChainReader] = None,
        price_oracle: Optional[HistoricPrice] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or load_protocol_config()
        self.store = store or RewardsRepository()
        self.chain = chain or ChainReader()
        self.price_oracle = price_oracle or HistoricPrice()
        self.clock = clock or time.time

        self.lock_positions = LockPositionProcessor(self.store)
        self.volume_calculator = VolumeRewardCalculator(self.config, self.store, self.price_oracle)
        self.staking_calculator = StakingRewardCalculator(self.config, self.store, self.price_oracle)

        self.status = ProcessorStatus.IDLE
        self.logger = logger.bind(service="rewards_processor")

    async def process_rewards(self) -> Optional[EpochSettlement]:
        """
        Settle the next epoch if it is final.

        Returns:
            EpochSettlement of the persisted epoch, None when the next epoch
            is not final yet
        """
        if self.status == ProcessorStatus.RUNNING:
            raise RewardsError("Rewards processor is already running", "PROCESSOR_BUSY")

        self.status = ProcessorStatus.RUNNING
        started = time.monotonic()
        try:
            settlement = await self._process_rewards()
        except Exception as e:
            self.status = ProcessorStatus.FAILED
            self.logger.error("Rewards processing failed", error=str(e), error_type=type(e).__name__)
            raise

        self.status = ProcessorStatus.COMPLETED if settlement else ProcessorStatus.IDLE
        if settlement:
            settlement.processing_time = time.monotonic() - started
            self.logger.info(
                "Rewards agent completed",
                epoch=settlement.epoch,
                trees=len(settlement.merkle_trees),
                epoch_results=len(settlement.epoch_results),
                rewards=len(settlement.rewards),
                processing_time=round(settlement.processing_time, 3)
            )
        return settlement

    async def _process_rewards(self) -> Optional[EpochSettlement]:
        lock_events = await self.lock_positions.drain_new_lock_positions()
        if lock_events:
            self.logger.info("Processed new lock positions", count=lock_events)

        epoch_duration = await self.chain.get_epoch_duration()
        epoch = await self.store.get_checkpoint(REWARDS_EPOCH_CHECKPOINT)
        if epoch == 0:
            self.logger.warning("Previous epoch does not exist, using genesis")
            epoch = await self.chain.get_genesis_epoch()
        else:
            epoch = epoch + epoch_duration
        epoch_end = epoch + epoch_duration

        # Settle only once half of the next epoch has passed
        current_time = self.clock()
        if current_time < epoch_end + epoch_duration / 2:
            self.logger.info(
                "Current epoch has not come to an end, exiting",
                current_time=int(current_time),
                epoch=epoch,
                epoch_end=epoch_end
            )
            return None

        self.logger.info("Settling epoch", epoch=epoch, epoch_end=epoch_end, epoch_duration=epoch_duration)

        volume = await self.volume_calculator.calculate(epoch, epoch_end)
        staking = await self.staking_calculator.calculate(epoch, epoch_end, epoch_duration)
        reward_dist = merge_distributions(volume.distributions, staking.distributions)

        await self.merge_with_previous_trees(epoch, reward_dist)

        trees, merkle_trees = await self.build_trees(epoch, epoch_end, reward_dist)
        proofs = self.build_proofs(epoch, trees)

        settlement = EpochSettlement(
            epoch=epoch,
            epoch_end=epoch_end,
            merkle_trees=merkle_trees,
            epoch_results=self.build_epoch_results(epoch, volume, reward_dist),
            rewards=self.build_rewards(epoch, reward_dist, trees, proofs, volume, staking),
            lock_events_processed=lock_events,
        )

        await self.persist(settlement)
        return settlement

    async def merge_with_previous_trees(self, epoch: int, reward_dist: RewardDistributions) -> None:
        """Add the leaves of the trees persisted for the epoch ending at `epoch` into `reward_dist`."""
        for previous in await self.store.get_merkle_trees(epoch):
            asset = previous.asset
            if asset not in reward_dist:
                # Reward config changed, holders of a removed asset are not carried forward
                self.logger.warning(
                    "Previous tree contains an asset missing from the reward config",
                    removed_asset=asset,
                    epoch=epoch
                )
                continue

            tree = StandardMerkleTree.loads(previous.merkle_tree)
            asset_rewards = reward_dist[asset]
            for _, (address, value) in tree.entries():
                amount = int(value)
                if amount < 0:
                    self.logger.error(
                        "Negative cumulative reward in previous tree",
                        epoch=epoch,
                        asset=asset,
                        address=address,
                        value=str(value)
                    )
                    raise InvalidState({"address": address, "asset": asset, "value": str(value)})
                asset_rewards[address] = asset_rewards.get(address, 0) + amount

    async def build_trees(
        self,
        epoch: int,
        epoch_end: int,
        reward_dist: RewardDistributions
    ) -> Tuple[Dict[str, StandardMerkleTree], List[MerkleTreeRecord]]:
        """One tree per asset over its positive (account, cumulative reward) pairs."""
        trees: Dict[str, StandardMerkleTree] = {}
        records: List[MerkleTreeRecord] = []

        for asset, asset_rewards in reward_dist.items():
            values = [[account, str(amount)] for account, amount in asset_rewards.items() if amount > 0]
            if not values:
                self.logger.warning("No voting or staking activity in epoch, skipping tree", epoch=epoch, asset=asset)
                continue
            if len(values) == 1:
                # A single leaf tree has no proof, pad it with an empty leaf
                self.logger.warning("Only one leaf in tree", epoch=epoch, asset=asset, account=values[0][0])
                values.append([ZERO_ADDRESS, "0"])

            tree = StandardMerkleTree.of(values, LEAF_ENCODING)
            update_count = await self.chain.get_reward_distributor_update_count(asset)

            trees[asset] = tree
            records.append(
                MerkleTreeRecord(
                    asset=asset,
                    root=tree.root,
                    proof=distribution_proof(asset, tree.root, epoch, update_count),
                    epoch_end_timestamp=epoch_end,
                    merkle_tree=tree.dumps(),
                )
            )

        self.logger.info(
            "Generated distributions",
            epoch=epoch,
            distributions=[{"asset": record.asset, "root": record.root} for record in records]
        )
        return trees, records

    def build_proofs(self, epoch: int, trees: Dict[str, StandardMerkleTree]) -> Dict[str, Dict[str, List[str]]]:
        proofs: Dict[str, Dict[str, List[str]]] = {}
        for asset, tree in trees.items():
            asset_proofs: Dict[str, List[str]] = {}
            for index, (address, _) in tree.entries():
                address_proof = tree.get_proof(index)
                if not address_proof:
                    self.logger.error("Empty proof for address", epoch=epoch, asset=asset, address=address, root=tree.root)
                    raise InvalidAddressProof(address_proof, {"asset": asset, "address": address, "root": tree.root})
                asset_proofs[address] = address_proof
            proofs[asset] = asset_proofs
        return proofs

    def build_epoch_results(
        self,
        epoch: int,
        volume: VolumeRewardsResult,
        reward_dist: RewardDistributions
    ) -> List[EpochResultRecord]:
        clear_asset = self.config.rewards.clear_asset_address
        results = []
        for user, user_volume in volume.user_volume.items():
            for domain, epoch_result in user_volume.epoch_results.items():
                results.append(
                    EpochResultRecord(
                        account=user,
                        domain=domain,
                        user_volume=epoch_result.scaled_user_volume,
                        total_volume=volume.total_volume[domain],
                        clear_emissions=epoch_result.emissions.get(clear_asset, 0) if clear_asset else 0,
                        cumulative_rewards=reward_dist.get(clear_asset, {}).get(user, 0) if clear_asset else 0,
                        epoch_timestamp=epoch,
                    )
                )
        return results

    def build_rewards(
        self,
        epoch: int,
        reward_dist: RewardDistributions,
        trees: Dict[str, StandardMerkleTree],
        proofs: Dict[str, Dict[str, List[str]]],
        volume: VolumeRewardsResult,
        staking: StakingRewardsResult
    ) -> List[RewardRecord]:
        """Reward rows for every account holding a cumulative reward."""
        rewards = []
        for asset, asset_rewards in reward_dist.items():
            for user, cumulative in asset_rewards.items():
                if cumulative <= 0:
                    continue

                user_volume = volume.user_volume.get(user)
                protocol_rewards = user_volume.protocol_rewards.get(asset, 0) if user_volume else 0
                stake = staking.metadata.get(asset, {}).get(user)
                stake_rewards = stake.stake_rewards if stake else 0

                proof = proofs.get(asset, {}).get(user)
                if not proof:
                    self.logger.error(
                        "Account with rewards has no proof",
                        epoch=epoch,
                        user=user,
                        asset=asset,
                        protocol_rewards=str(protocol_rewards),
                        stake_rewards=str(stake_rewards),
                        cumulative_rewards=str(cumulative)
                    )
                    raise InvalidState({"user": user, "asset": asset, "cumulative_rewards": str(cumulative)})

                rewards.append(
                    RewardRecord(
                        account=user,
                        asset=asset,
                        merkle_root=trees[asset].root,
                        proof=proof,
                        stake_apy=stake.stake_apy_bps if stake else 0,
                        stake_rewards=stake_rewards,
                        total_clear_staked=stake.total_clear_staked if stake else 0,
                        protocol_rewards=protocol_rewards,
                        cumulative_rewards=cumulative,
                        epoch_timestamp=epoch,
                    )
                )
        return rewards

    async def persist(self, settlement: EpochSettlement) -> None:
        """Write the epoch outputs, the checkpoint goes last."""
        async with self.store.transaction() as session:
            if settlement.merkle_trees:
                await self.store.save_merkle_trees(settlement.merkle_trees, session=session)
            if settlement.epoch_results:
                await self.store.save_epoch_results(settlement.epoch_results, session=session)
            if settlement.rewards:
                await self.store.save_rewards(settlement.rewards, session=session)
            self.logger.info("Saved all data into database", epoch=settlement.epoch)

            await self.store.save_checkpoint(REWARDS_EPOCH_CHECKPOINT, settlement.epoch, session=session)


# Global processor instance
_rewards_processor: Optional[RewardsProcessor] = None


def get_rewards_processor() -> RewardsProcessor:
    """Get global rewards processor instance."""
    global _rewards_processor
    if _rewards_processor is None:
        _rewards_processor = RewardsProcessor()
    return _rewards_processor
