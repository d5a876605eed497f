from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Set, Tuple

from solana_exporter.addresses import is_valid_address, parse_address
from solana_exporter.config import Whitelist
from solana_exporter.errors import HistoricalGap
from solana_exporter.metrics import inc_counter
from solana_exporter.rewards.cache import EpochCache
from solana_exporter.rewards.fetcher import RewardFetcher, RewardsRpc
from solana_exporter.rewards.models import (
    ACCOUNT_BATCH_SIZE,
    MAX_EPOCH_LOOKBACK,
    StakingApy,
    StakingReward,
    VoterApy,
)
from solana_exporter.schemas import EpochInfo, RawReward, RewardType
from solana_exporter.stake_state import decode_stake_state

log = logging.getLogger("solana_exporter.rewards.apy")

PubkeyEpoch = Tuple[str, int]
PkEpochApyMap = Dict[PubkeyEpoch, float]


def compounded_apy(lamports: int, post_balance: int, epoch_duration: float) -> Tuple[float, float]:
    """Returns (apy, apr) as fractions for one epoch's reward.

    A rate too large to compound within float range yields an APY of `math.inf`.
    """
    prev_balance = post_balance - lamports
    epoch_rate = lamports / prev_balance
    apr = epoch_rate / epoch_duration * 365.0
    epochs_in_year = 365.0 / epoch_duration
    try:
        apy = (1.0 + apr / epochs_in_year) ** epochs_in_year - 1.0
    except OverflowError:
        apy = math.inf
    return apy, apr


def calculate_staking_apy(
    account_data: bytes,
    seen_voters: Set[str],
    epoch_duration: float,
    lamports: int,
    post_balance: int,
) -> Optional[StakingApy]:
    """Calculates the staking APY of a stake account's reward.

    Returns None when the account is not delegated. A voter is credited at
    most once per `seen_voters` set: later delegations to it, and rewards
    that are not positive, yield 0.0.
    """
    delegation = decode_stake_state(account_data).delegation
    if delegation is None:
        return None

    voter = delegation.voter_pubkey
    percent = 0.0
    if voter not in seen_voters and lamports > 0 and post_balance > lamports:
        apy, apr = compounded_apy(lamports, post_balance, epoch_duration)
        log.debug("Staking APY of %s is %.4f (APR %.4f)", voter, apy * 100.0, apr * 100.0)
        seen_voters.add(voter)
        percent = apy * 100.0
    return StakingApy(voter=voter, percent=percent)


def _credit(table: Dict[str, float], voter: str, percent: float) -> None:
    # A credited (non-zero) value is final; zeros only fill absent voters.
    existing = table.get(voter)
    if existing is None or (existing == 0.0 and percent != 0.0):
        table[voter] = percent


def staking_rewards(rewards: List[RawReward], whitelist: Optional[Whitelist] = None) -> List[StakingReward]:
    """Staking-kind rewards with a valid (and whitelisted) stake account address.

    Malformed addresses are dropped, not raised.
    """
    out: List[StakingReward] = []
    for r in rewards:
        if not r.is_kind(RewardType.STAKING):
            continue
        if not is_valid_address(r.pubkey):
            inc_counter("staking_rewards_dropped_total")
            continue
        if whitelist is not None and not whitelist.contains(r.pubkey):
            continue
        out.append(StakingReward(pubkey=r.pubkey, lamports=int(r.lamports), post_balance=int(r.post_balance)))
    return out


class ApyEstimator:
    """Staking APY per voter over the last MAX_EPOCH_LOOKBACK epochs."""

    def __init__(
        self,
        *,
        client: RewardsRpc,
        fetcher: RewardFetcher,
        cache: EpochCache,
        staking_account_whitelist: Optional[Whitelist] = None,
    ) -> None:
        self._client = client
        self._fetcher = fetcher
        self._cache = cache
        self._staking_whitelist = staking_account_whitelist

    def estimate(self, epoch_info: EpochInfo) -> Optional[Dict[str, VoterApy]]:
        """Returns the APY of every voter, or None if the current epoch has no rewards yet.

        The result for an epoch is final once its rewards and stake lookups
        are cached, so a stored aggregate short-circuits the computation.
        """
        current_epoch = int(epoch_info.epoch)
        stored = self._cache.get_epoch_voter_apy(current_epoch)
        if stored is not None:
            inc_counter("apy_aggregate_cache_hits_total")
            return stored

        apys = self.fill_historical_epochs(epoch_info)
        voter_apys = self.fill_current_epoch_and_find_apy(epoch_info, apys)
        if voter_apys is not None:
            self._cache.put_epoch_voter_apy(current_epoch, voter_apys)
        return voter_apys

    def lookback_epochs(self, current_epoch: int) -> range:
        """Epochs of the averaging window, oldest first, ending at the current epoch."""
        return range(max(0, current_epoch - MAX_EPOCH_LOOKBACK + 1), current_epoch + 1)

    def fill_historical_epochs(self, epoch_info: EpochInfo) -> PkEpochApyMap:
        """Cached APYs of the epochs preceding the current one in the window.

        Each of those epochs has concluded and must have rewards.
        """
        current_epoch = int(epoch_info.epoch)
        apys: PkEpochApyMap = {}

        for epoch in self.lookback_epochs(current_epoch)[:-1]:
            historical_rewards = self._fetcher.resolve(epoch, epoch_info)
            if historical_rewards is None:
                raise HistoricalGap("historical_epoch_no_rewards", f"historical epoch {epoch} has no rewards")
            for reward in historical_rewards:
                parse_address(reward.pubkey)

            historical_apys = self._cache.get_epoch_apy(epoch) or {}
            apys.update(((voter, epoch), percent) for voter, percent in historical_apys.items())

        return apys

    def fill_current_epoch_and_find_apy(
        self,
        epoch_info: EpochInfo,
        apys: PkEpochApyMap,
    ) -> Optional[Dict[str, VoterApy]]:
        current_epoch = int(epoch_info.epoch)

        current_rewards = self._fetcher.resolve(current_epoch, epoch_info)
        if current_rewards is None:
            return None

        cached_apys = self._cache.get_epoch_apy(current_epoch) or {}
        to_query = [r for r in staking_rewards(current_rewards, self._staking_whitelist) if r.pubkey not in cached_apys]

        current_table = dict(cached_apys)
        if to_query:
            self._query_stake_accounts(current_epoch, to_query, current_table)

        apys.update(((voter, current_epoch), percent) for voter, percent in current_table.items())
        return self.average_apys(current_epoch, apys)

    def _query_stake_accounts(
        self,
        current_epoch: int,
        to_query: List[StakingReward],
        current_table: Dict[str, float],
    ) -> None:
        """Looks up stake accounts in batches and credits their voters into `current_table`.

        The seen-voter set spans every batch of this call. The whole table is
        written back to the cache after each batch.
        """
        epoch_duration = self._cache.get_epoch_duration(current_epoch)
        seen_voters: Set[str] = set()

        for start in range(0, len(to_query), ACCOUNT_BATCH_SIZE):
            chunk = to_query[start : start + ACCOUNT_BATCH_SIZE]
            accounts = self._client.get_multiple_accounts([r.pubkey for r in chunk])

            for reward, account in zip(chunk, accounts):
                if account is None:
                    continue
                staking_apy = calculate_staking_apy(
                    account.data,
                    seen_voters,
                    epoch_duration,
                    reward.lamports,
                    reward.post_balance,
                )
                if staking_apy is not None:
                    _credit(current_table, staking_apy.voter, staking_apy.percent)

            self._cache.put_epoch_apy(current_epoch, current_table)

    def average_apys(self, current_epoch: int, apys: PkEpochApyMap) -> Dict[str, VoterApy]:
        """Duration-weighted average over the window; missing epochs count as 0.0."""
        voter_epoch_apys: Dict[str, Dict[int, float]] = {}
        for (voter, epoch), apy in apys.items():
            voter_epoch_apys.setdefault(voter, {})[epoch] = apy

        epoch_durations = {e: self._cache.get_epoch_duration(e) for e in self.lookback_epochs(current_epoch)}
        total_duration = sum(epoch_durations.values())

        voter_apys: Dict[str, VoterApy] = {}
        for voter, epoch_apys in voter_epoch_apys.items():
            total_apy = sum(epoch_apys.get(e, 0.0) * d for e, d in epoch_durations.items())
            voter_apys[voter] = VoterApy(
                current_apy=epoch_apys.get(current_epoch, 0.0),
                average_apy=total_apy / total_duration,
            )
        return voter_apys
