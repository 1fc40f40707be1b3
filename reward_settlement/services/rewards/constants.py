"""
Reward computation constants and fixed-point helpers.
"""

import math

REWARDS_EPOCH_CHECKPOINT = "rewards_epoch"
NEW_LOCK_POSITIONS_CHECKPOINT = "rewards_last_processed_new_lock_position_vid"

MONTH_SECONDS = 30 * 24 * 60 * 60
YEAR_SECONDS = 365 * 24 * 60 * 60

# APY in bps is scaled by this before dividing by YEAR_SECONDS (3 extra d.p.)
APY_MULTIPLIER = 10 ** 3
BPS_MULTIPLIER = 10 ** 4

# 1 dbps = 1/100,000
DBPS_MULTIPLIER = 10 ** 5

# USD values carry 6 d.p. as integers
USD_MULTIPLIER = 10 ** 6

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def div_round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounding .5 towards positive infinity."""
    return (2 * numerator + denominator) // (2 * denominator)


def scale_usd_price(price: float) -> int:
    """USD price as an integer with USD_MULTIPLIER precision, .5 rounded up."""
    return math.floor(price * USD_MULTIPLIER + 0.5)
