"""
Tests for the staking reward calculator.
"""

import pytest

from reward_settlement.core.config import ApyTier, TokenStakingReward
from reward_settlement.core.exceptions import InvalidAsset
from reward_settlement.services.rewards.constants import MONTH_SECONDS, YEAR_SECONDS
from reward_settlement.services.rewards.staking import (
    StakingRewardCalculator,
    calculate_apy,
    effective_lock_duration,
)
from reward_settlement.services.rewards.types import LockPosition

from conftest import ALICE, BOB, CLEAR, USDC, WETH, clear_staking, make_config


TIERS = TokenStakingReward(
    address=CLEAR,
    apy=[ApyTier(term=0, apy_bps=500), ApyTier(term=3, apy_bps=1000), ApyTier(term=12, apy_bps=1500)],
)


def position(months: float, start: int = 0) -> LockPosition:
    return LockPosition(ALICE, 1, start, start + int(months * MONTH_SECONDS))


class TestCalculateApy:
    def test_lowest_tier(self):
        assert calculate_apy(TIERS, position(2)) == 500

    def test_exact_term_qualifies(self):
        assert calculate_apy(TIERS, position(3)) == 1000

    def test_highest_tier(self):
        assert calculate_apy(TIERS, position(13)) == 1500

    def test_no_qualifying_tier(self):
        token = TokenStakingReward(address=CLEAR, apy=[ApyTier(term=1, apy_bps=500)])
        assert calculate_apy(token, position(0.5)) == 0

    def test_fractional_months_do_not_round_up(self):
        assert calculate_apy(TIERS, position(2.99)) == 500


class TestEffectiveLockDuration:
    EPOCH, END, DURATION = 1000, 1100, 100

    def duration(self, start, expiry):
        return effective_lock_duration(LockPosition(ALICE, 1, start, expiry), self.EPOCH, self.END, self.DURATION)

    def test_spans_whole_epoch(self):
        assert self.duration(900, 2000) == 100

    def test_starts_inside_epoch(self):
        assert self.duration(1050, 2000) == 50

    def test_expires_inside_epoch(self):
        assert self.duration(900, 1080) == 80

    def test_starts_and_expires_inside_epoch_counts_from_epoch_start(self):
        # the overlap is 30 seconds but the formula counts 80
        assert self.duration(1050, 1080) == 80


@pytest.mark.asyncio
async def test_full_year_at_ten_percent(store, price_oracle):
    epoch = 100
    epoch_end = epoch + YEAR_SECONDS
    store.add_position(ALICE, 1_000_000, 0, epoch_end + 1)
    calculator = StakingRewardCalculator(make_config(staking_tokens=[clear_staking()]), store, price_oracle)

    result = await calculator.calculate(epoch, epoch_end, YEAR_SECONDS)

    assert result.distributions == {CLEAR: {ALICE: 100_000}}
    metadata = result.metadata[CLEAR][ALICE]
    assert metadata.stake_rewards == 100_000
    assert metadata.stake_apy_bps == 1000
    assert metadata.total_clear_staked == 1_000_000


@pytest.mark.asyncio
async def test_partial_epoch_reward_is_pro_rated(store, price_oracle):
    epoch, duration = 10_000, 7 * 24 * 3600
    epoch_end = epoch + duration
    # starts half way through the epoch, locked for a year
    start = epoch + duration // 2
    store.add_position(ALICE, 10 ** 18, start, start + YEAR_SECONDS)
    calculator = StakingRewardCalculator(make_config(staking_tokens=[clear_staking()]), store, price_oracle)

    result = await calculator.calculate(epoch, epoch_end, duration)

    seconds = epoch_end - start
    multiplied_apy = (2 * 1000 * seconds * 1000 + YEAR_SECONDS) // (2 * YEAR_SECONDS)
    assert result.distributions[CLEAR][ALICE] == 10 ** 18 * multiplied_apy // 10 ** 7


@pytest.mark.asyncio
async def test_only_overlapping_positions_count(store, price_oracle):
    epoch, duration = 1000, 100
    store.add_position(ALICE, 1_000, 0, 5000)
    store.add_position(BOB, 1_000, 0, 1000)  # expired at the epoch start
    store.add_position(BOB, 2_000, 1100, 5000)  # starts at the epoch end
    calculator = StakingRewardCalculator(make_config(staking_tokens=[clear_staking()]), store, price_oracle)

    result = await calculator.calculate(epoch, epoch + duration, duration)

    assert set(result.distributions[CLEAR]) == {ALICE}
    assert set(result.metadata[CLEAR]) == {ALICE}


@pytest.mark.asyncio
async def test_weighted_apy_across_cohorts(store, price_oracle):
    epoch, duration = 10 * MONTH_SECONDS, 7 * 24 * 3600
    # 3000 locked for 12+ months at 1000 bps, 1000 locked for 1 month at 500 bps
    store.add_position(ALICE, 3000, 0, 12 * MONTH_SECONDS)
    store.add_position(ALICE, 1000, epoch - MONTH_SECONDS // 2, epoch + MONTH_SECONDS // 2)
    calculator = StakingRewardCalculator(make_config(staking_tokens=[clear_staking()]), store, price_oracle)

    result = await calculator.calculate(epoch, epoch + duration, duration)

    metadata = result.metadata[CLEAR][ALICE]
    assert metadata.total_clear_staked == 4000
    assert metadata.stake_apy_bps == (3000 * 1000 + 1000 * 500) // 4000


@pytest.mark.asyncio
async def test_non_native_token_reward_converted_at_epoch_end_prices(store, price_oracle, prices):
    prices["CLEAR"] = 0.5
    prices["USDC"] = 1.0
    epoch = 100
    epoch_end = epoch + YEAR_SECONDS
    store.add_position(ALICE, 1_000_000, 0, epoch_end + 1)
    token = TokenStakingReward(address=USDC, apy=[ApyTier(term=0, apy_bps=1000)])
    calculator = StakingRewardCalculator(make_config(staking_tokens=[token]), store, price_oracle)

    result = await calculator.calculate(epoch, epoch_end, YEAR_SECONDS)

    # 100_000 CLEAR worth 0.5 USD each, paid in USDC at 1 USD
    assert result.distributions[USDC][ALICE] == 50_000
    requested = {call.args[0].symbol for call in price_oracle.get_historic_token_price.await_args_list}
    assert {"CLEAR", "USDC"} <= requested


@pytest.mark.asyncio
async def test_non_native_token_without_hub_config_raises(store, price_oracle):
    config = make_config(staking_tokens=[TokenStakingReward(address=WETH, apy=[ApyTier(term=0, apy_bps=100)])])
    del config.hub.assets["WETH"]
    store.add_position(ALICE, 1_000, 0, 5000)

    with pytest.raises(InvalidAsset) as exc_info:
        await StakingRewardCalculator(config, store, price_oracle).calculate(1000, 1100, 100)

    assert exc_info.value.address == WETH


@pytest.mark.asyncio
async def test_configured_token_without_positions_has_empty_distribution(store, price_oracle):
    calculator = StakingRewardCalculator(make_config(staking_tokens=[clear_staking()]), store, price_oracle)

    result = await calculator.calculate(1000, 1100, 100)

    assert result.distributions == {CLEAR: {}}
    assert result.metadata == {CLEAR: {}}
