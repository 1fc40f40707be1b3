"""
Checkpoint model - single-value progress markers.
"""

from sqlalchemy import String, BigInteger
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class Checkpoint(BaseModel, TimestampMixin):
    """Named progress marker read and written around one unit of work."""

    __tablename__ = "checkpoints"

    check_name: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        comment="Checkpoint key"
    )

    check_point: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Last processed value (vid or epoch timestamp)"
    )

    def __repr__(self) -> str:
        return f"<Checkpoint(name={self.check_name}, point={self.check_point})>"
