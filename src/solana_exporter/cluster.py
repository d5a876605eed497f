from __future__ import annotations

import logging
from typing import FrozenSet, Optional, Protocol

from solana_exporter.config import Whitelist
from solana_exporter.gauges import PrometheusGauges
from solana_exporter.schemas import EpochInfo, VoteAccounts

log = logging.getLogger("solana_exporter.cluster")


class VoteAccountsRpc(Protocol):
    def get_vote_accounts(self) -> VoteAccounts: ...


def node_identities(vote_whitelist: Whitelist, vote_accounts: VoteAccounts) -> Optional[FrozenSet[str]]:
    """Node identities behind the whitelisted vote accounts.

    None means every identity is allowed (the vote whitelist is empty). An
    empty set means none of the whitelisted vote accounts is known to the
    cluster.
    """
    if not vote_whitelist.items:
        return None
    return frozenset(
        a.node_pubkey
        for a in (*vote_accounts.current, *vote_accounts.delinquent)
        if a.vote_pubkey in vote_whitelist.items
    )


class ClusterMonitor:
    """Epoch progress and vote account gauges, refreshed every tick."""

    def __init__(
        self,
        *,
        client: VoteAccountsRpc,
        gauges: PrometheusGauges,
        vote_account_whitelist: Optional[Whitelist] = None,
    ) -> None:
        self._client = client
        self._gauges = gauges
        self._vote_whitelist = vote_account_whitelist or Whitelist()

    def tick(self, epoch_info: EpochInfo) -> VoteAccounts:
        vote_accounts = self._client.get_vote_accounts()
        log.debug(
            "%d current and %d delinquent vote accounts",
            len(vote_accounts.current),
            len(vote_accounts.delinquent),
        )
        self.export_vote_accounts(vote_accounts)
        self.export_epoch_info(epoch_info)
        return vote_accounts

    def node_identities(self, vote_accounts: VoteAccounts) -> Optional[FrozenSet[str]]:
        return node_identities(self._vote_whitelist, vote_accounts)

    def export_vote_accounts(self, vote_accounts: VoteAccounts) -> None:
        g = self._gauges
        # Cluster-wide counts ignore the whitelist.
        g.active_validators.set("current", len(vote_accounts.current))
        g.active_validators.set("delinquent", len(vote_accounts.delinquent))

        for delinquent, accounts in ((0, vote_accounts.current), (1, vote_accounts.delinquent)):
            for a in accounts:
                if not self._vote_whitelist.contains(a.vote_pubkey):
                    continue
                g.validator_activated_stake.set(a.vote_pubkey, a.activated_stake)
                g.validator_last_vote.set(a.vote_pubkey, a.last_vote)
                g.validator_root_slot.set(a.vote_pubkey, a.root_slot)
                g.validator_delinquent.set(a.vote_pubkey, delinquent)

    def export_epoch_info(self, epoch_info: EpochInfo) -> None:
        g = self._gauges
        first_slot = int(epoch_info.absolute_slot) - int(epoch_info.slot_index)
        g.current_epoch.set(epoch_info.epoch)
        g.current_epoch_first_slot.set(first_slot)
        g.current_epoch_last_slot.set(first_slot + int(epoch_info.slots_in_epoch) - 1)
        g.slot_height.set(epoch_info.absolute_slot)
        if epoch_info.block_height is not None:
            g.block_height.set(epoch_info.block_height)
        if epoch_info.transaction_count is not None:
            g.transaction_count.set(epoch_info.transaction_count)
