from __future__ import annotations

import logging
from typing import Optional, Set

from solana_exporter.config import Whitelist
from solana_exporter.errors import NoCurrentRewards
from solana_exporter.gauges import PrometheusGauges
from solana_exporter.logging_util import log_event
from solana_exporter.metrics import inc_counter
from solana_exporter.rewards.apy import ApyEstimator
from solana_exporter.rewards.cache import EpochCache
from solana_exporter.rewards.fetcher import RewardFetcher, RewardsRpc
from solana_exporter.rewards.models import ValidatorReward
from solana_exporter.schemas import EpochInfo, RewardType

log = logging.getLogger("solana_exporter.rewards.monitor")


class RewardsMonitor:
    """The monitor of rewards paid to validators and delegators."""

    def __init__(
        self,
        *,
        client: RewardsRpc,
        gauges: PrometheusGauges,
        cache: EpochCache,
        staking_account_whitelist: Optional[Whitelist] = None,
        vote_account_whitelist: Optional[Whitelist] = None,
    ) -> None:
        self._gauges = gauges
        self._cache = cache
        self._vote_whitelist = vote_account_whitelist or Whitelist()
        self.fetcher = RewardFetcher(client=client, cache=cache)
        self.estimator = ApyEstimator(
            client=client,
            fetcher=self.fetcher,
            cache=cache,
            staking_account_whitelist=staking_account_whitelist,
        )

    def tick(self, epoch_info: EpochInfo) -> bool:
        """Exports reward metrics for the current epoch.

        Returns False without touching any gauge while the epoch has no
        rewards block yet. A rewards block with an empty reward list exports
        no validator rewards; one with rewards but no voting reward raises
        NoCurrentRewards. Every error propagates to the caller.
        """
        epoch = int(epoch_info.epoch)

        rewards = self.fetcher.resolve(epoch, epoch_info)
        if rewards is None:
            return False

        staking_apys = self.estimator.estimate(epoch_info) or {}
        exported = 0
        for voter in sorted(staking_apys):
            if not self._vote_whitelist.contains(voter):
                continue
            apy = staking_apys[voter]
            self._gauges.current_staking_apy.set(voter, apy.current_apy)
            self._gauges.average_staking_apy.set(voter, apy.average_apy)
            exported += 1

        validator_rewards = self.calculate_validator_rewards(epoch) or set()
        if rewards and not validator_rewards:
            raise NoCurrentRewards("no_voting_rewards", f"current epoch {epoch} has no voting rewards")
        for v in sorted(validator_rewards, key=lambda r: (r.voter, r.lamports)):
            if self._vote_whitelist.contains(v.voter):
                self._gauges.validator_rewards.set(v.voter, v.lamports)

        inc_counter("rewards_ticks_exported_total")
        log_event(
            log,
            "rewards_exported",
            epoch=epoch,
            voters=exported,
            validator_rewards=len(validator_rewards),
        )
        return True

    def calculate_validator_rewards(self, epoch: int) -> Optional[Set[ValidatorReward]]:
        """Voting rewards of an epoch from the cache, deduplicated by (voter, post balance)."""
        rewards = self._cache.get_epoch_rewards(epoch)
        if rewards is None:
            return None
        return {
            ValidatorReward(voter=r.pubkey, lamports=int(r.post_balance))
            for r in rewards
            if r.is_kind(RewardType.VOTING)
        }
