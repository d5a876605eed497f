# src/solana_exporter/rewards/__init__.py
"""
Rewards and staking APY subsystem.

  - cache:   epoch-keyed durable cache (rewards, APY tables, aggregates)
  - fetcher: rewards of an epoch, from the cache or the node
  - apy:     per-delegation compounding APY and the lookback-window average
  - monitor: once-per-tick orchestration and gauge export
"""

from solana_exporter.rewards.apy import ApyEstimator, calculate_staking_apy
from solana_exporter.rewards.cache import EpochCache
from solana_exporter.rewards.fetcher import RewardFetcher
from solana_exporter.rewards.monitor import RewardsMonitor
from solana_exporter.rewards.models import (
    ACCOUNT_BATCH_SIZE,
    EPOCH_DURATION_DAYS,
    MAX_EPOCH_LOOKBACK,
    SLOT_OFFSET,
    StakingApy,
    StakingReward,
    ValidatorReward,
    VoterApy,
)

__all__ = [
    "ACCOUNT_BATCH_SIZE",
    "EPOCH_DURATION_DAYS",
    "MAX_EPOCH_LOOKBACK",
    "SLOT_OFFSET",
    "ApyEstimator",
    "EpochCache",
    "RewardFetcher",
    "RewardsMonitor",
    "StakingApy",
    "StakingReward",
    "ValidatorReward",
    "VoterApy",
    "calculate_staking_apy",
]
