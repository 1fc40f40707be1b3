"""
Reward output models - per account rewards and per domain volume results.
"""

from typing import List

from sqlalchemy import String, BigInteger, Integer, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class Reward(BaseModel, TimestampMixin):
    """Reward row per (asset, account) and epoch, with its Merkle proof."""

    __tablename__ = "rewards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account: Mapped[str] = mapped_column(String(42), comment="Account address")
    asset: Mapped[str] = mapped_column(String(66), comment="Reward asset address")
    merkle_root: Mapped[str] = mapped_column(String(66), comment="Root of the asset tree")

    proof: Mapped[List[str]] = mapped_column(
        JSON,
        comment="Inclusion proof of the account leaf"
    )

    stake_apy: Mapped[str] = mapped_column(String(78), comment="Weighted stake APY in bps")
    stake_rewards: Mapped[str] = mapped_column(String(78), comment="Staking rewards of the epoch")
    total_clear_staked: Mapped[str] = mapped_column(String(78), comment="Total CLEAR staked in the epoch")
    protocol_rewards: Mapped[str] = mapped_column(String(78), comment="Volume rewards of the epoch")
    cumulative_rewards: Mapped[str] = mapped_column(String(78), comment="Lifetime rewards committed in the tree")

    epoch_timestamp: Mapped[int] = mapped_column(
        BigInteger,
        comment="Epoch start timestamp"
    )

    __table_args__ = (
        Index("idx_rewards_account_asset", "account", "asset", "epoch_timestamp"),
    )


class EpochResult(BaseModel, TimestampMixin):
    """Volume report per (account, domain) and epoch."""

    __tablename__ = "epoch_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account: Mapped[str] = mapped_column(String(42), comment="Account address")
    domain: Mapped[str] = mapped_column(String(20), comment="Settlement domain")
    user_volume: Mapped[str] = mapped_column(String(78), comment="Scaled USD volume of the account")
    total_volume: Mapped[str] = mapped_column(String(78), comment="Scaled USD volume of the domain")
    clear_emissions: Mapped[str] = mapped_column(String(78), comment="CLEAR emitted for this volume")
    cumulative_rewards: Mapped[str] = mapped_column(String(78), comment="Lifetime CLEAR rewards")

    epoch_timestamp: Mapped[int] = mapped_column(
        BigInteger,
        comment="Epoch start timestamp"
    )

    __table_args__ = (
        Index("idx_epoch_results_account_epoch", "account", "epoch_timestamp"),
    )
