"""
Epoch reward settlement: lock cohorts, volume and staking rewards,
cumulative Merkle distributions.
"""

from .types import ProcessorStatus, EpochSettlement, RewardDistributions
from .lock_positions import LockPositionProcessor
from .staking import StakingRewardCalculator, calculate_apy
from .volume import VolumeRewardCalculator
from .processor import RewardsProcessor, get_rewards_processor, merge_distributions

__all__ = [
    "ProcessorStatus",
    "EpochSettlement",
    "RewardDistributions",
    "LockPositionProcessor",
    "StakingRewardCalculator",
    "calculate_apy",
    "VolumeRewardCalculator",
    "RewardsProcessor",
    "get_rewards_processor",
    "merge_distributions",
]
