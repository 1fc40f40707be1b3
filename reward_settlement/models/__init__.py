"""
Database models for the reward settlement engine.

Contains SQLAlchemy models for indexed tokenomics inputs (lock events,
intents, votes) and for the persisted settlement outputs.
"""

from .base import Base, BaseModel, TimestampMixin
from .checkpoint import Checkpoint
from .lock_position import NewLockPositionEvent, LockPosition
from .intent import Intent, IntentStatus
from .vote import VoteCast
from .merkle_tree import MerkleTree
from .reward import Reward, EpochResult

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "Checkpoint",
    "NewLockPositionEvent",
    "LockPosition",
    "Intent",
    "IntentStatus",
    "VoteCast",
    "MerkleTree",
    "Reward",
    "EpochResult",
]
