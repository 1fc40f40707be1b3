"""
Volume reward calculator.

Settled intent volume is valued in USD (6 d.p. integers) per user and domain.
Each volume reward token funds two pools out of its epoch budget:

- the base pool, a fixed dbps share of the total volume paid pro rata to volume;
- the variable pool, the remainder up to the volume cap, split between domains
  by gauge votes and within a domain pro rata to volume.

Both are converted back to token units with the epoch end price.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Optional

import structlog

from reward_settlement.core.config import ProtocolConfig, TokenVolumeReward
from reward_settlement.core.exceptions import InvalidAsset, InvalidState
from ..historic_price import HistoricPrice
from .constants import DBPS_MULTIPLIER, USD_MULTIPLIER, scale_usd_price
from .database import RewardsRepository
from .types import DomainEpochResult, UserVolume, VolumeRewardsResult


logger = structlog.get_logger(__name__)


class VolumeRewardCalculator:
    """Computes base and variable volume rewards per user."""

    def __init__(
        self,
        config: ProtocolConfig,
        store: Optional[RewardsRepository] = None,
        price_oracle: Optional[HistoricPrice] = None,
    ):
        self.config = config
        self.store = store or RewardsRepository()
        self.price_oracle = price_oracle or HistoricPrice()
        self.logger = logger.bind(service="volume_reward_calculator")

    async def calculate(self, epoch: int, epoch_end: int) -> VolumeRewardsResult:
        """
        Calculate volume rewards for the epoch [epoch, epoch_end).

        Returns:
            VolumeRewardsResult with the reward distribution, the per user and
            domain volume breakdown and the per domain total volume
        """
        self.logger.info("Calculating volume rewards", epoch=epoch, epoch_end=epoch_end)
        result = VolumeRewardsResult()

        domain_votes: Dict[str, int] = {}
        total_vote = 0
        for vote in await self.store.get_votes(epoch):
            domain_votes[str(vote.domain)] = vote.votes
            total_vote += vote.votes

        self.logger.info(
            "Retrieved votes for epoch",
            epoch=epoch,
            domain_votes={domain: str(votes) for domain, votes in domain_votes.items()},
            total_vote=str(total_vote)
        )

        await self._aggregate_volume(epoch, epoch_end, result)

        total_across_domains = sum(result.total_volume.values())
        self.logger.info(
            "Total scaled volume in epoch",
            epoch=epoch,
            total_volume={domain: str(volume) for domain, volume in result.total_volume.items()},
            total_across_domains=str(total_across_domains)
        )

        for token in self.config.rewards.volume.tokens:
            if total_across_domains <= 0:
                self.logger.warning(
                    "No volume in epoch, skipping volume rewards",
                    epoch=epoch,
                    token=token.address,
                    total_vote=str(total_vote)
                )
                continue

            await self._distribute_token(epoch, epoch_end, token, result, domain_votes, total_vote, total_across_domains)

        self.logger.info("Computed volume rewards", epoch=epoch, users=len(result.user_volume))
        return result

    async def _aggregate_volume(self, epoch: int, epoch_end: int, result: VolumeRewardsResult) -> None:
        """Sum settled intent USD volume per initiator and per domain."""
        for domain in self.config.chains:
            intents = await self.store.get_settled_intents_in_epoch(domain, epoch, epoch_end)
            if not intents:
                self.logger.warning("Domain has no settled intent in epoch", epoch=epoch, domain=domain)
                continue

            asset_configs = self.config.domain_asset_configs(domain)
            account_volume: Dict[str, int] = defaultdict(int)
            total_domain_volume = 0

            for intent in intents.values():
                settlement_asset = intent.settlement_asset.lower()
                asset = asset_configs.get(settlement_asset)
                if asset is None:
                    self.logger.error(
                        "Invalid settlement asset",
                        epoch=epoch,
                        domain=domain,
                        asset=settlement_asset,
                        intent_id=intent.intent_id
                    )
                    raise InvalidAsset(settlement_asset, {"domain": domain})

                price = await self.price_oracle.get_historic_token_price(
                    asset, datetime.fromtimestamp(intent.settlement_timestamp, tz=timezone.utc)
                )
                # divide once at the end to avoid losing precision twice
                scaled_usd_value = intent.settlement_amount * scale_usd_price(price) // 10 ** asset.decimals

                total_domain_volume += scaled_usd_value
                account_volume[intent.initiator_address] += scaled_usd_value

            result.total_volume[domain] = total_domain_volume
            for account, volume in account_volume.items():
                user_volume = result.user_volume.setdefault(account, UserVolume())
                user_volume.epoch_results[domain] = DomainEpochResult(scaled_user_volume=volume)

    async def _distribute_token(
        self,
        epoch: int,
        epoch_end: int,
        token: TokenVolumeReward,
        result: VolumeRewardsResult,
        domain_votes: Dict[str, int],
        total_vote: int,
        total_across_domains: int
    ) -> None:
        asset_config = self.config.hub_asset_configs().get(token.address.lower())
        if asset_config is None:
            self.logger.error("Asset config does not exist on hub", epoch=epoch, token=token.address)
            raise InvalidAsset(token.address, {"reason": "asset config not in hub"})

        asset_multiplier = 10 ** asset_config.decimals
        asset_price = await self.price_oracle.get_historic_token_price(
            asset_config, datetime.fromtimestamp(epoch_end, tz=timezone.utc)
        )
        scaled_asset_price = scale_usd_price(asset_price)
        epoch_volume_reward = token.epoch_volume_reward

        # ======== Pools ========

        scaled_epoch_reward_usd = scaled_asset_price * epoch_volume_reward // asset_multiplier
        scaled_max_volume_cap_usd = token.max_bps_usd_volume_cap * USD_MULTIPLIER
        max_rewards_dbps = scaled_epoch_reward_usd * DBPS_MULTIPLIER // scaled_max_volume_cap_usd

        base_reward_dbps = token.base_reward_dbps
        base_pool = total_across_domains * base_reward_dbps // DBPS_MULTIPLIER
        total_pool = max_rewards_dbps * total_across_domains // DBPS_MULTIPLIER

        if base_pool > scaled_epoch_reward_usd:
            base_pool = scaled_epoch_reward_usd
            total_pool = scaled_epoch_reward_usd
            base_reward_dbps = base_pool * DBPS_MULTIPLIER // total_across_domains

        variable_reward_dbps = max_rewards_dbps - base_reward_dbps
        variable_pool = total_pool - base_pool
        if variable_pool < 0:
            variable_reward_dbps = 0
            variable_pool = 0
            total_pool = base_pool

        pool_context = {
            "epoch": epoch,
            "token": token.address,
            "scaled_asset_price": str(scaled_asset_price),
            "scaled_epoch_reward_usd": str(scaled_epoch_reward_usd),
            "max_rewards_dbps": str(max_rewards_dbps),
            "base_reward_dbps": str(base_reward_dbps),
            "variable_reward_dbps": str(variable_reward_dbps),
            "base_pool": str(base_pool),
            "variable_pool": str(variable_pool),
            "total_pool": str(total_pool),
            "total_across_domains": str(total_across_domains),
        }
        self.logger.info("Reward pools for epoch", **pool_context)

        # ======== Base rewards ========

        total_base_reward = 0
        for user, user_volume in result.user_volume.items():
            base_reward = 0
            for domain, epoch_result in user_volume.epoch_results.items():
                # USD scale cancels out
                domain_base_reward = (
                    epoch_result.scaled_user_volume * base_reward_dbps * asset_multiplier
                    // (scaled_asset_price * DBPS_MULTIPLIER)
                )
                if domain_base_reward < 0:
                    self.logger.error(
                        "Negative domain base reward",
                        user=user,
                        domain=domain,
                        scaled_user_volume=str(epoch_result.scaled_user_volume),
                        **pool_context
                    )
                    raise InvalidState({"user": user, "domain": domain, "token": token.address})

                base_reward += domain_base_reward
                epoch_result.emissions[token.address] = domain_base_reward

            user_volume.protocol_rewards[token.address] = base_reward
            total_base_reward += base_reward

        # More base reward than budget means a broken price or an impossible volume
        if total_base_reward > epoch_volume_reward:
            self.logger.error(
                "Base reward greater than epoch reward",
                total_base_reward=str(total_base_reward),
                epoch_volume_reward=str(epoch_volume_reward),
                **pool_context
            )
            raise InvalidState({
                "epoch": epoch,
                "token": token.address,
                "total_base_reward": str(total_base_reward),
                "epoch_volume_reward": str(epoch_volume_reward),
            })

        self.logger.info(
            "Calculated base volume rewards for token",
            epoch=epoch,
            token=token.address,
            total_base_reward=str(total_base_reward)
        )

        # ======== Variable rewards ========

        total_variable_reward = 0
        if total_vote <= 0:
            self.logger.warning(
                "No votes in epoch, skipping variable rewards",
                epoch=epoch,
                token=token.address,
                total_base_reward=str(total_base_reward)
            )
        else:
            for user, user_volume in result.user_volume.items():
                variable_reward = 0
                for domain, epoch_result in user_volume.epoch_results.items():
                    if result.total_volume[domain] == 0:
                        # dust-only domain, its share of the pool is 0
                        continue

                    domain_variable_reward = (
                        variable_pool * epoch_result.scaled_user_volume * domain_votes.get(domain, 0) * asset_multiplier
                        // (total_vote * result.total_volume[domain] * scaled_asset_price)
                    )
                    if domain_variable_reward < 0:
                        self.logger.error(
                            "Negative domain variable reward",
                            user=user,
                            domain=domain,
                            domain_vote=str(domain_votes.get(domain, 0)),
                            total_vote=str(total_vote),
                            domain_volume=str(result.total_volume[domain]),
                            **pool_context
                        )
                        raise InvalidState({"user": user, "domain": domain, "token": token.address})

                    variable_reward += domain_variable_reward
                    epoch_result.emissions[token.address] = (
                        epoch_result.emissions.get(token.address, 0) + domain_variable_reward
                    )

                user_volume.protocol_rewards[token.address] += variable_reward
                total_variable_reward += variable_reward

        if total_base_reward + total_variable_reward > epoch_volume_reward:
            self.logger.error(
                "Total reward greater than epoch reward",
                total_base_reward=str(total_base_reward),
                total_variable_reward=str(total_variable_reward),
                epoch_volume_reward=str(epoch_volume_reward),
                **pool_context
            )
            raise InvalidState({
                "epoch": epoch,
                "token": token.address,
                "total_base_reward": str(total_base_reward),
                "total_variable_reward": str(total_variable_reward),
                "epoch_volume_reward": str(epoch_volume_reward),
            })

        token_distribution = result.distributions.setdefault(token.address, {})
        for user, user_volume in result.user_volume.items():
            token_distribution[user] = token_distribution.get(user, 0) + user_volume.protocol_rewards[token.address]

        # Variable rewards are per user fractions of the pool, the total may fall a little short of it
        self.logger.info(
            "Computed volume rewards for token",
            total_base_reward=str(total_base_reward),
            total_variable_reward=str(total_variable_reward),
            total_reward=str(total_base_reward + total_variable_reward),
            **pool_context
        )
