"""
Vote model - governance gauge votes per domain and epoch.
"""

from sqlalchemy import String, BigInteger, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class VoteCast(BaseModel, TimestampMixin):
    """Single vote cast for a domain in an epoch."""

    __tablename__ = "vote_casts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    epoch: Mapped[int] = mapped_column(
        BigInteger,
        comment="Epoch the vote applies to"
    )

    domain: Mapped[str] = mapped_column(
        String(20),
        comment="Domain voted for"
    )

    user: Mapped[str] = mapped_column(
        String(42),
        comment="Voter address"
    )

    votes: Mapped[str] = mapped_column(
        String(78),
        comment="Vote weight"
    )

    __table_args__ = (
        Index("idx_vote_casts_epoch_domain", "epoch", "domain"),
    )
