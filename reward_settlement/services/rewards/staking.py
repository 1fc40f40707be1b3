"""
Staking reward calculator.

Every lock cohort overlapping the epoch earns, for each configured staking
token, the APY of the tier its lock period qualifies for, pro-rated by how
long the cohort lasts inside the epoch. Rewards in a token other than the
native (CLEAR) token are converted at the epoch end USD prices.
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import structlog

from reward_settlement.core.config import AssetConfig, ProtocolConfig, TokenStakingReward
from reward_settlement.core.exceptions import InvalidAsset, InvalidState
from ..historic_price import HistoricPrice
from .constants import APY_MULTIPLIER, BPS_MULTIPLIER, MONTH_SECONDS, YEAR_SECONDS, div_round_half_up, scale_usd_price
from .database import RewardsRepository
from .types import LockPosition, StakeMetadata, StakingRewardsResult


logger = structlog.get_logger(__name__)


def calculate_apy(token_config: TokenStakingReward, position: LockPosition) -> int:
    """APY in bps of the highest tier whose term (months) the lock period reaches."""
    lock_months = (position.expiry - position.start) / MONTH_SECONDS
    eligible_apy_bps = 0
    for tier in token_config.apy:
        if lock_months >= tier.term:
            eligible_apy_bps = tier.apy_bps
        else:
            break
    return eligible_apy_bps


def effective_lock_duration(position: LockPosition, epoch: int, epoch_end: int, epoch_duration: int) -> int:
    """Seconds of the epoch the position counts for."""
    if position.expiry > epoch_end:
        return epoch_duration if position.start <= epoch else epoch_end - position.start
    # Does not clip a late start, a cohort starting and expiring inside the epoch counts from the epoch start
    return position.expiry - epoch


class StakingRewardCalculator:
    """Computes per user staking rewards for each configured staking token."""

    def __init__(
        self,
        config: ProtocolConfig,
        store: Optional[RewardsRepository] = None,
        price_oracle: Optional[HistoricPrice] = None,
    ):
        self.config = config
        self.store = store or RewardsRepository()
        self.price_oracle = price_oracle or HistoricPrice()
        self.logger = logger.bind(service="staking_reward_calculator")

    async def calculate(self, epoch: int, epoch_end: int, epoch_duration: int) -> StakingRewardsResult:
        """
        Calculate staking rewards for the epoch [epoch, epoch_end).

        Returns:
            StakingRewardsResult with a distribution entry for every staking
            token (possibly empty) and per (token, user) metadata
        """
        rewards_config = self.config.rewards
        tokens = rewards_config.staking.tokens
        hub_assets = self.config.hub_asset_configs()
        price_date = datetime.fromtimestamp(epoch_end, tz=timezone.utc)

        self.logger.info(
            "Calculating staking rewards",
            epoch=epoch,
            epoch_end=epoch_end,
            epoch_duration=epoch_duration,
            tokens=[token.address for token in tokens]
        )

        result = StakingRewardsResult()
        for token in tokens:
            result.distributions[token.address] = {}
            result.metadata[token.address] = {}

        positions = await self.store.get_lock_positions(expiry_from=epoch, start_before=epoch_end)

        total_clear_staked: Dict[str, int] = defaultdict(int)
        weighted_stake: Dict[str, Dict[str, int]] = {token.address: defaultdict(int) for token in tokens}
        conversions: Dict[str, Tuple[int, int]] = {}

        for position in positions:
            user = position.user
            total_clear_staked[user] += position.amount_locked

            for token in tokens:
                apy = calculate_apy(token, position)
                duration = effective_lock_duration(position, epoch, epoch_end, epoch_duration)

                # apy bps scaled by APY_MULTIPLIER, 100% = 10000 bps
                multiplied_apy = div_round_half_up(apy * duration * APY_MULTIPLIER, YEAR_SECONDS)
                position_reward = position.amount_locked * multiplied_apy // (APY_MULTIPLIER * BPS_MULTIPLIER)
                if position_reward < 0:
                    self.logger.error(
                        "Negative position reward",
                        epoch=epoch,
                        user=user,
                        asset=token.address,
                        position_reward=str(position_reward),
                        apy=apy,
                        effective_lock_duration=duration,
                        start=position.start,
                        expiry=position.expiry
                    )
                    raise InvalidState({
                        "user": user,
                        "asset": token.address,
                        "position_reward": str(position_reward),
                        "apy": apy,
                        "effective_lock_duration": duration,
                    })

                if token.address != rewards_config.clear_asset_address:
                    if token.address not in conversions:
                        conversions[token.address] = await self._conversion_prices(
                            epoch, token.address, hub_assets, price_date
                        )
                    scaled_clear_price, scaled_token_price = conversions[token.address]
                    # reward in CLEAR -> USD -> token, the USD scale cancels out
                    position_reward = position_reward * scaled_clear_price // scaled_token_price

                result.distributions[token.address][user] = (
                    result.distributions[token.address].get(user, 0) + position_reward
                )
                weighted_stake[token.address][user] += position.amount_locked * apy

        for token in tokens:
            token_rewards = result.distributions[token.address]
            total_stake_rewards = 0
            total_user_clear_staked = 0
            for user, staked in total_clear_staked.items():
                result.metadata[token.address][user] = StakeMetadata(
                    stake_apy_bps=weighted_stake[token.address][user] // staked if staked else 0,
                    stake_rewards=token_rewards.get(user, 0),
                    total_clear_staked=staked,
                )
                total_stake_rewards += token_rewards.get(user, 0)
                total_user_clear_staked += staked

            scaled_price = None
            if token.address in conversions:
                scaled_price = conversions[token.address][1]
            elif token.address.lower() in hub_assets:
                scaled_price = scale_usd_price(
                    await self.price_oracle.get_historic_token_price(hub_assets[token.address.lower()], price_date)
                )

            self.logger.info(
                "Computed staking rewards for token",
                epoch=epoch,
                token=token.address,
                total_stake_rewards=str(total_stake_rewards),
                total_user_clear_staked=str(total_user_clear_staked),
                scaled_token_price=scaled_price
            )

        self.logger.info("Computed staking rewards", epoch=epoch, positions=len(positions), users=len(total_clear_staked))
        return result

    async def _conversion_prices(
        self,
        epoch: int,
        token_address: str,
        hub_assets: Dict[str, AssetConfig],
        price_date: datetime
    ) -> Tuple[int, int]:
        """Scaled (CLEAR price, token price) at the epoch end."""
        clear_address = self.config.rewards.clear_asset_address or ""
        asset_config = hub_assets.get(token_address.lower())
        if asset_config is None:
            self.logger.error("Asset config not in hub", epoch=epoch, asset=token_address)
            raise InvalidAsset(token_address, {"reason": "asset config not in hub"})

        clear_config = hub_assets.get(clear_address.lower())
        if clear_config is None:
            self.logger.error("CLEAR config not in hub", epoch=epoch, asset=token_address, clear_asset=clear_address)
            raise InvalidAsset(token_address, {"reason": "CLEAR config not in hub", "clear_asset": clear_address})

        token_price, clear_price = await asyncio.gather(
            self.price_oracle.get_historic_token_price(asset_config, price_date),
            self.price_oracle.get_historic_token_price(clear_config, price_date),
        )
        return scale_usd_price(clear_price), scale_usd_price(token_price)
