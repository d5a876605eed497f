from __future__ import annotations

import math
from typing import Dict, List

import pytest

from solana_exporter import metrics
from solana_exporter.config import Whitelist
from solana_exporter.errors import AddressParseError, HistoricalGap
from solana_exporter.rewards.apy import ApyEstimator, calculate_staking_apy, compounded_apy, staking_rewards
from solana_exporter.rewards.cache import EpochCache
from solana_exporter.rewards.fetcher import RewardFetcher
from solana_exporter.rewards.models import VoterApy
from solana_exporter.testing.chain_fixtures import (
    FakeRpc,
    deterministic_pubkey,
    epoch_info,
    reward,
    stake_account,
    stake_account_data,
)

SLOTS = 432_000
# 1% epoch rate compounded over 365/3 epochs.
ONE_PERCENT_APY = ((1.0 + 0.01) ** (365.0 / 3.0) - 1.0) * 100.0


def _estimator(rpc: FakeRpc, cache: EpochCache, **kw) -> ApyEstimator:
    return ApyEstimator(client=rpc, fetcher=RewardFetcher(client=rpc, cache=cache), cache=cache, **kw)


def _seed_history(cache: EpochCache, epochs) -> None:
    for e in epochs:
        cache.put_epoch_rewards(e, [])


def test_compounded_apy_formula() -> None:
    apy, apr = compounded_apy(1_000_000, 101_000_000, 3.0)
    assert apr == pytest.approx(0.01 / 3.0 * 365.0)
    assert apy * 100.0 == pytest.approx(ONE_PERCENT_APY, abs=1e-6)


def test_first_delegation_to_voter_is_credited() -> None:
    voter = deterministic_pubkey("vote-1")
    seen: set = set()

    got = calculate_staking_apy(stake_account_data(voter), seen, 3.0, 1_000_000, 101_000_000)

    assert got is not None
    assert got.voter == voter
    assert got.percent == pytest.approx(ONE_PERCENT_APY, abs=1e-6)
    assert seen == {voter}


def test_seen_voter_yields_zero() -> None:
    voter = deterministic_pubkey("vote-1")
    seen = {voter}

    got = calculate_staking_apy(stake_account_data(voter), seen, 3.0, 1_000_000, 101_000_000)

    assert got is not None
    assert got.percent == 0.0


def test_undelegated_account_yields_none() -> None:
    assert calculate_staking_apy(stake_account_data(None), set(), 3.0, 1_000_000, 101_000_000) is None


@pytest.mark.parametrize("lamports,post_balance", [(0, 100), (100, 100), (-5, 100)])
def test_non_positive_reward_or_balance_is_not_credited(lamports: int, post_balance: int) -> None:
    voter = deterministic_pubkey("vote-1")
    seen: set = set()

    got = calculate_staking_apy(stake_account_data(voter), seen, 3.0, lamports, post_balance)

    assert got is not None and got.percent == 0.0
    assert seen == set()


def test_staking_rewards_filter_kind_address_and_whitelist() -> None:
    a = deterministic_pubkey("stake-a")
    b = deterministic_pubkey("stake-b")
    rewards = [
        reward(a, 10, 1_000, "Staking"),
        reward(b, 10, 1_000, "Staking"),
        reward("not-an-address", 10, 1_000, "Staking"),
        reward(deterministic_pubkey("vote"), 10, 1_000, "Voting"),
        reward(deterministic_pubkey("fee"), 10, 1_000, None),
    ]

    assert [r.pubkey for r in staking_rewards(rewards)] == [a, b]
    assert metrics.get_counter("staking_rewards_dropped_total") == 1
    assert [r.pubkey for r in staking_rewards(rewards, Whitelist.of([b]))] == [b]


def test_lookback_window_is_clamped_at_genesis(cache: EpochCache) -> None:
    est = _estimator(FakeRpc(), cache)
    assert list(est.lookback_epochs(10)) == [6, 7, 8, 9, 10]
    assert list(est.lookback_epochs(2)) == [0, 1, 2]


def test_average_counts_missing_epochs_as_zero(cache: EpochCache) -> None:
    voter = deterministic_pubkey("vote-1")
    _seed_history(cache, range(6, 11))
    cache.put_epoch_apy(6, {voter: 10.0})
    cache.put_epoch_apy(10, {voter: 20.0})
    rpc = FakeRpc()

    got = _estimator(rpc, cache).estimate(epoch_info(10))

    assert got == {voter: VoterApy(current_apy=20.0, average_apy=pytest.approx(6.0))}
    assert rpc.calls == []


def test_epochs_outside_window_are_ignored(cache: EpochCache) -> None:
    voter = deterministic_pubkey("vote-1")
    _seed_history(cache, range(6, 11))
    cache.put_epoch_apy(5, {voter: 99.0})
    cache.put_epoch_apy(10, {voter: 5.0})

    got = _estimator(FakeRpc(), cache).estimate(epoch_info(10))

    assert got is not None
    assert got[voter].average_apy == pytest.approx(1.0)


def test_current_epoch_without_rewards_yields_none(cache: EpochCache) -> None:
    _seed_history(cache, range(6, 10))
    rpc = FakeRpc()

    assert _estimator(rpc, cache).estimate(epoch_info(10, slot_index=3)) is None
    assert cache.get_epoch_voter_apy(10) is None


def test_historical_epoch_without_rewards_is_a_gap(cache: EpochCache, monkeypatch: pytest.MonkeyPatch) -> None:
    _seed_history(cache, [6, 7, 9])
    est = _estimator(FakeRpc(), cache)
    monkeypatch.setattr(est._fetcher, "resolve", lambda epoch, info: cache.get_epoch_rewards(epoch))

    with pytest.raises(HistoricalGap):
        est.estimate(epoch_info(10))


def test_malformed_address_in_history_is_fatal(cache: EpochCache) -> None:
    _seed_history(cache, [6, 7, 8])
    cache.put_epoch_rewards(9, [reward("not-an-address", 1, 2, "Staking")])

    with pytest.raises(AddressParseError):
        _estimator(FakeRpc(), cache).estimate(epoch_info(10))


def test_first_credited_delegation_wins(cache: EpochCache) -> None:
    voter = deterministic_pubkey("vote-1")
    s1, s2 = deterministic_pubkey("stake-1"), deterministic_pubkey("stake-2")
    _seed_history(cache, [0, 1])
    rpc = FakeRpc(
        blocks={2 * SLOTS: [reward(s1, 1_000_000, 101_000_000, "Staking"), reward(s2, 5_000_000, 105_000_000, "Staking")]},
        accounts={s1: stake_account(voter), s2: stake_account(voter)},
    )

    got = _estimator(rpc, cache).estimate(epoch_info(2))

    assert got is not None
    assert got[voter].current_apy == pytest.approx(ONE_PERCENT_APY, abs=1e-6)
    assert cache.get_epoch_apy(2) == {voter: pytest.approx(ONE_PERCENT_APY, abs=1e-6)}


def test_stake_lookups_are_batched_and_cached_cumulatively(
    cache: EpochCache, monkeypatch: pytest.MonkeyPatch
) -> None:
    stakes = [deterministic_pubkey(f"stake-{i}") for i in range(150)]
    voters = [deterministic_pubkey(f"vote-{i}") for i in range(150)]
    _seed_history(cache, [0, 1])
    rpc = FakeRpc(
        blocks={2 * SLOTS: [reward(s, 1_000_000, 101_000_000, "Staking") for s in stakes]},
        accounts={s: stake_account(v) for s, v in zip(stakes, voters)},
    )

    written: List[Dict[str, float]] = []
    real_put = cache.put_epoch_apy

    def _spy(epoch: int, apys) -> None:
        written.append(dict(apys))
        real_put(epoch, apys)

    monkeypatch.setattr(cache, "put_epoch_apy", _spy)

    got = _estimator(rpc, cache).estimate(epoch_info(2))

    batches = [args for m, args in rpc.calls if m == "get_multiple_accounts"]
    assert [len(b) for b in batches] == [100, 50]
    assert [len(w) for w in written] == [100, 150]
    assert got is not None and len(got) == 150
    assert got[voters[0]].average_apy == pytest.approx(ONE_PERCENT_APY / 3.0, abs=1e-6)


def test_missing_and_undelegated_accounts_are_skipped(cache: EpochCache) -> None:
    voter = deterministic_pubkey("vote-1")
    gone, idle, live = (deterministic_pubkey(n) for n in ("stake-gone", "stake-idle", "stake-live"))
    _seed_history(cache, [0])
    rpc = FakeRpc(
        blocks={SLOTS: [reward(s, 1_000_000, 101_000_000, "Staking") for s in (gone, idle, live)]},
        accounts={idle: stake_account(None), live: stake_account(voter)},
    )

    got = _estimator(rpc, cache).estimate(epoch_info(1))

    assert got is not None
    assert set(got) == {voter}


def test_stored_aggregate_short_circuits(cache: EpochCache) -> None:
    stored = {"voter-a": VoterApy(current_apy=1.0, average_apy=0.5)}
    cache.put_epoch_voter_apy(10, stored)
    rpc = FakeRpc()

    assert _estimator(rpc, cache).estimate(epoch_info(10)) == stored
    assert rpc.calls == []
    assert metrics.get_counter("apy_aggregate_cache_hits_total") == 1


def test_staking_whitelist_limits_lookups(cache: EpochCache) -> None:
    a, b = deterministic_pubkey("stake-a"), deterministic_pubkey("stake-b")
    _seed_history(cache, [0])
    rpc = FakeRpc(
        blocks={SLOTS: [reward(a, 1_000_000, 101_000_000, "Staking"), reward(b, 1_000_000, 101_000_000, "Staking")]},
        accounts={a: stake_account(deterministic_pubkey("vote-a")), b: stake_account(deterministic_pubkey("vote-b"))},
    )

    got = _estimator(rpc, cache, staking_account_whitelist=Whitelist.of([b])).estimate(epoch_info(1))

    assert [args for m, args in rpc.calls if m == "get_multiple_accounts"] == [[b]]
    assert got is not None and set(got) == {deterministic_pubkey("vote-b")}


def test_compounded_apy_beyond_float_range_is_infinite() -> None:
    # Epoch rate of ~438x: compounding 365/3 times exceeds the float range.
    apy, apr = compounded_apy(1_000_000_000, 1_002_282_880, 3.0)
    assert apy == math.inf
    assert math.isfinite(apr)


def test_infinite_apy_is_estimated_and_cached(cache: EpochCache) -> None:
    voter, stake = deterministic_pubkey("vote-1"), deterministic_pubkey("stake-1")
    _seed_history(cache, [0, 1, 2])
    rpc = FakeRpc(
        blocks={3 * SLOTS: [reward(stake, 1_000_000_000, 1_002_282_880, "Staking")]},
        accounts={stake: stake_account(voter)},
    )

    got = _estimator(rpc, cache).estimate(epoch_info(3))

    assert got is not None
    assert got[voter] == VoterApy(current_apy=math.inf, average_apy=math.inf)
    assert cache.get_epoch_apy(3) == {voter: math.inf}
    assert cache.get_epoch_voter_apy(3) == got
