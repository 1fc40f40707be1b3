"""
Lock position models - raw tokenomics lock events and reconciled cohorts.

Token amounts are uint256 values stored as decimal strings.
"""

from sqlalchemy import String, BigInteger, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class NewLockPositionEvent(BaseModel):
    """Indexed NewLockPosition event: the user's new total lock and expiry."""

    __tablename__ = "new_lock_position_events"

    vid: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        comment="Monotonic sequence id from the indexer"
    )

    user: Mapped[str] = mapped_column(
        String(42),
        comment="Staker address"
    )

    new_total_amount_locked: Mapped[str] = mapped_column(
        String(78),
        comment="Total amount locked after the event"
    )

    block_timestamp: Mapped[int] = mapped_column(
        BigInteger,
        comment="Block timestamp of the event"
    )

    expiry: Mapped[int] = mapped_column(
        BigInteger,
        comment="Lock expiry timestamp after the event"
    )

    __table_args__ = (
        Index("idx_new_lock_position_events_user", "user"),
    )

    def __repr__(self) -> str:
        return f"<NewLockPositionEvent(vid={self.vid}, user={self.user}, total={self.new_total_amount_locked})>"


class LockPosition(BaseModel, TimestampMixin):
    """Lock cohort: stake sharing one start timestamp."""

    __tablename__ = "lock_positions"

    user: Mapped[str] = mapped_column(
        String(42),
        primary_key=True,
        comment="Staker address"
    )

    start: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        comment="Cohort start timestamp"
    )

    amount_locked: Mapped[str] = mapped_column(
        String(78),
        comment="Amount locked in this cohort"
    )

    expiry: Mapped[int] = mapped_column(
        BigInteger,
        comment="Cohort expiry timestamp"
    )

    __table_args__ = (
        Index("idx_lock_positions_expiry", "expiry"),
        Index("idx_lock_positions_start", "start"),
    )

    def __repr__(self) -> str:
        return f"<LockPosition(user={self.user}, start={self.start}, amount={self.amount_locked})>"
