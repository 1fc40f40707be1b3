"""
Types for reward processing.

Amounts are plain ints (uint256 range); the repository converts them to and
from their decimal string storage.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


# asset address -> account address -> amount
RewardDistributions = Dict[str, Dict[str, int]]


class ProcessorStatus(Enum):
    """Status of the rewards processor."""
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass
class NewLockPositionEvent:
    """Latest lock state of a user as emitted on-chain."""
    vid: int
    user: str
    new_total_amount_locked: int
    block_timestamp: int
    expiry: int


@dataclass
class LockPosition:
    """Lock cohort of a user."""
    user: str
    amount_locked: int
    start: int
    expiry: int


@dataclass
class DomainVote:
    """Summed gauge votes of a domain in an epoch."""
    domain: str
    votes: int


@dataclass
class SettledIntent:
    """Settled cross-domain intent used for volume accounting."""
    intent_id: str
    initiator: str  # 32-byte hex word
    origin_domain: str
    settlement_domain: str
    settlement_asset: str
    settlement_amount: int
    settlement_timestamp: int

    @property
    def initiator_address(self) -> str:
        """20-byte address packed in the initiator word."""
        return "0x" + self.initiator[26:]


@dataclass
class StakeMetadata:
    stake_apy_bps: int = 0
    stake_rewards: int = 0
    total_clear_staked: int = 0


@dataclass
class StakingRewardsResult:
    """Staking rewards of an epoch and per (asset, user) reporting data."""
    distributions: RewardDistributions = field(default_factory=dict)
    metadata: Dict[str, Dict[str, StakeMetadata]] = field(default_factory=dict)


@dataclass
class DomainEpochResult:
    """Volume of a user on one domain and the emissions it earned per asset."""
    scaled_user_volume: int = 0
    emissions: Dict[str, int] = field(default_factory=dict)


@dataclass
class UserVolume:
    epoch_results: Dict[str, DomainEpochResult] = field(default_factory=dict)
    protocol_rewards: Dict[str, int] = field(default_factory=dict)


@dataclass
class VolumeRewardsResult:
    """Volume rewards of an epoch with per user and per domain breakdown."""
    distributions: RewardDistributions = field(default_factory=dict)
    user_volume: Dict[str, UserVolume] = field(default_factory=dict)
    total_volume: Dict[str, int] = field(default_factory=dict)


@dataclass
class MerkleTreeRecord:
    asset: str
    root: str
    proof: str
    epoch_end_timestamp: int
    merkle_tree: str  # JSON dump


@dataclass
class RewardRecord:
    account: str
    asset: str
    merkle_root: str
    proof: List[str]
    stake_apy: int
    stake_rewards: int
    total_clear_staked: int
    protocol_rewards: int
    cumulative_rewards: int
    epoch_timestamp: int


@dataclass
class EpochResultRecord:
    account: str
    domain: str
    user_volume: int
    total_volume: int
    clear_emissions: int
    cumulative_rewards: int
    epoch_timestamp: int


@dataclass
class EpochSettlement:
    """Everything persisted for one settled epoch."""
    epoch: int
    epoch_end: int
    merkle_trees: List[MerkleTreeRecord] = field(default_factory=list)
    epoch_results: List[EpochResultRecord] = field(default_factory=list)
    rewards: List[RewardRecord] = field(default_factory=list)
    lock_events_processed: int = 0
    processing_time: Optional[float] = None
