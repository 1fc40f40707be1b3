"""
Database components for reward processing.
"""

from .repository import RewardsRepository

__all__ = ["RewardsRepository"]
