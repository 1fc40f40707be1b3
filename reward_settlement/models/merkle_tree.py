"""
Merkle tree model - per asset cumulative reward distribution of an epoch.
"""

from sqlalchemy import String, BigInteger, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class MerkleTree(BaseModel, TimestampMixin):
    """Serialized cumulative distribution tree. Append-only."""

    __tablename__ = "merkle_trees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    asset: Mapped[str] = mapped_column(
        String(66),
        comment="Reward asset address"
    )

    root: Mapped[str] = mapped_column(
        String(66),
        comment="Merkle root"
    )

    proof: Mapped[str] = mapped_column(
        String(66),
        comment="Commitment hash binding the root to the on-chain update count"
    )

    epoch_end_timestamp: Mapped[int] = mapped_column(
        BigInteger,
        comment="End of the epoch the tree settles"
    )

    merkle_tree: Mapped[str] = mapped_column(
        Text,
        comment="JSON dump of the tree"
    )

    __table_args__ = (
        Index("idx_merkle_trees_epoch_end", "epoch_end_timestamp"),
        Index("idx_merkle_trees_asset_epoch_end", "asset", "epoch_end_timestamp"),
    )

    def __repr__(self) -> str:
        return f"<MerkleTree(asset={self.asset}, root={self.root}, epoch_end={self.epoch_end_timestamp})>"
