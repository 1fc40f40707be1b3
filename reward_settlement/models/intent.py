"""
Intent model - cross-domain intents as indexed by the settlement pipeline.
"""

from enum import Enum

from sqlalchemy import String, BigInteger, Index, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class IntentStatus(Enum):
    """Settlement status of an intent."""
    NONE = "none"
    ADDED = "added"
    DISPATCHED = "dispatched"
    SETTLED = "settled"
    RETURNED = "returned"


class Intent(BaseModel, TimestampMixin):
    """Cross-domain intent with its origin and settlement legs."""

    __tablename__ = "intents"

    id: Mapped[str] = mapped_column(
        String(66),
        primary_key=True,
        comment="Intent id"
    )

    initiator: Mapped[str] = mapped_column(
        String(66),
        comment="Initiator as a 32-byte hex word"
    )

    origin_domain: Mapped[str] = mapped_column(
        String(20),
        comment="Origin domain id"
    )

    origin_timestamp: Mapped[int] = mapped_column(
        BigInteger,
        comment="Origin timestamp"
    )

    settlement_domain: Mapped[str] = mapped_column(
        String(20),
        comment="Settlement domain id"
    )

    settlement_asset: Mapped[str] = mapped_column(
        String(66),
        comment="Settlement asset address"
    )

    settlement_amount: Mapped[str] = mapped_column(
        String(78),
        comment="Settled amount in asset units"
    )

    settlement_timestamp: Mapped[int] = mapped_column(
        BigInteger,
        comment="Settlement timestamp"
    )

    settlement_status: Mapped[IntentStatus] = mapped_column(
        SQLEnum(IntentStatus),
        default=IntentStatus.NONE,
        comment="Settlement status"
    )

    __table_args__ = (
        Index("idx_intents_settlement", "settlement_domain", "settlement_status", "settlement_timestamp"),
    )

    def __repr__(self) -> str:
        return f"<Intent(id={self.id}, domain={self.settlement_domain}, status={self.settlement_status.value})>"
