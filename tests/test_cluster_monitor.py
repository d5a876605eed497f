from __future__ import annotations

from solana_exporter import metrics
from solana_exporter.cluster import ClusterMonitor, node_identities
from solana_exporter.config import Whitelist
from solana_exporter.gauges import PrometheusGauges
from solana_exporter.schemas import EpochInfo, VoteAccounts
from solana_exporter.testing.chain_fixtures import FakeRpc, deterministic_pubkey, epoch_info, vote_account

VOTE_A, NODE_A = deterministic_pubkey("vote-a"), deterministic_pubkey("node-a")
VOTE_B, NODE_B = deterministic_pubkey("vote-b"), deterministic_pubkey("node-b")
VOTE_C, NODE_C = deterministic_pubkey("vote-c"), deterministic_pubkey("node-c")


def _accounts() -> VoteAccounts:
    return VoteAccounts(
        current=[
            vote_account(VOTE_A, NODE_A, stake=100, last_vote=990, root_slot=958),
            vote_account(VOTE_B, NODE_B, stake=200, last_vote=991, root_slot=959),
        ],
        delinquent=[vote_account(VOTE_C, NODE_C, stake=0, last_vote=10, root_slot=0)],
    )


def _monitor(rpc: FakeRpc, **kw) -> tuple[ClusterMonitor, PrometheusGauges]:
    gauges = PrometheusGauges()
    return ClusterMonitor(client=rpc, gauges=gauges, **kw), gauges


def test_vote_accounts_are_exported_per_account() -> None:
    monitor, gauges = _monitor(FakeRpc(vote_accounts=_accounts()))

    monitor.tick(epoch_info(3))

    assert gauges.active_validators.get("current") == 2
    assert gauges.active_validators.get("delinquent") == 1
    assert gauges.validator_activated_stake.get(VOTE_B) == 200
    assert gauges.validator_last_vote.get(VOTE_A) == 990
    assert gauges.validator_root_slot.get(VOTE_A) == 958
    assert gauges.validator_delinquent.get(VOTE_A) == 0
    assert gauges.validator_delinquent.get(VOTE_C) == 1


def test_vote_whitelist_limits_per_account_series_only() -> None:
    monitor, gauges = _monitor(FakeRpc(vote_accounts=_accounts()), vote_account_whitelist=Whitelist.of([VOTE_C]))

    monitor.tick(epoch_info(3))

    assert gauges.active_validators.get("current") == 2
    assert gauges.validator_last_vote.get(VOTE_A) is None
    assert gauges.validator_delinquent.get(VOTE_C) == 1


def test_epoch_info_gauges() -> None:
    monitor, gauges = _monitor(FakeRpc())
    info = EpochInfo(
        epoch=5,
        slot_index=17,
        slots_in_epoch=432,
        absolute_slot=5 * 432 + 17,
        block_height=2000,
        transaction_count=123_456,
    )

    monitor.export_epoch_info(info)

    assert gauges.current_epoch.get() == 5
    assert gauges.current_epoch_first_slot.get() == 2160
    assert gauges.current_epoch_last_slot.get() == 2591
    assert gauges.slot_height.get() == 2177
    assert gauges.block_height.get() == 2000
    assert gauges.transaction_count.get() == 123_456
    assert "solana_current_epoch_last_slot 2591" in metrics.format_prometheus()


def test_missing_optional_epoch_fields_leave_gauges_unset() -> None:
    monitor, gauges = _monitor(FakeRpc())

    monitor.export_epoch_info(epoch_info(2))

    assert gauges.block_height.get() is None
    assert gauges.transaction_count.get() is None


def test_node_identities_follow_vote_whitelist() -> None:
    accounts = _accounts()

    assert node_identities(Whitelist(), accounts) is None
    assert node_identities(Whitelist.of([VOTE_A, VOTE_C]), accounts) == frozenset({NODE_A, NODE_C})
    assert node_identities(Whitelist.of(["unknown"]), accounts) == frozenset()
