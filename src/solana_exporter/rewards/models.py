from __future__ import annotations

from dataclasses import dataclass

# Slots after an epoch's first slot searched for its first block.
SLOT_OFFSET = 20

# Number of epochs to look back, INCLUSIVE of the current epoch.
MAX_EPOCH_LOOKBACK = 5

# getMultipleAccounts batch size.
ACCOUNT_BATCH_SIZE = 100

# Placeholder epoch length in days. APY figures are defined relative to it.
EPOCH_DURATION_DAYS = 3.0


@dataclass(frozen=True, slots=True)
class StakingReward:
    pubkey: str
    lamports: int
    post_balance: int  # account balance in lamports after `lamports` was applied


@dataclass(frozen=True, slots=True)
class ValidatorReward:
    voter: str
    lamports: int


@dataclass(frozen=True, slots=True)
class StakingApy:
    voter: str
    percent: float


@dataclass(frozen=True, slots=True)
class VoterApy:
    current_apy: float
    average_apy: float
