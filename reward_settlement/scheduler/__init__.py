"""
Scheduler service for periodic epoch settlement.
"""

from .rewards_scheduler import RewardsScheduler, SchedulerStats, SchedulerStatus, get_rewards_scheduler

__all__ = ["RewardsScheduler", "SchedulerStats", "SchedulerStatus", "get_rewards_scheduler"]
