from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

from solana_exporter.errors import MissingEpochData
from solana_exporter.metrics import inc_counter
from solana_exporter.rewards.cache import EpochCache
from solana_exporter.rewards.models import SLOT_OFFSET
from solana_exporter.schemas import AccountInfo, BlockRewards, EpochInfo, RawReward

log = logging.getLogger("solana_exporter.rewards.fetcher")


class RewardsRpc(Protocol):
    """The node calls the rewards subsystem depends on."""

    def get_blocks(self, start_slot: int, end_slot: Optional[int] = None) -> List[int]: ...

    def get_block(self, slot: int) -> BlockRewards: ...

    def get_multiple_accounts(self, addresses: Sequence[str]) -> List[Optional[AccountInfo]]: ...


class RewardFetcher:
    """Resolves the rewards of an epoch from the cache or, on a miss, the node."""

    def __init__(self, *, client: RewardsRpc, cache: EpochCache) -> None:
        self._client = client
        self._cache = cache

    def resolve(self, epoch: int, epoch_info: EpochInfo) -> Optional[List[RawReward]]:
        """Gets the rewards for `epoch` given the current `epoch_info`.

        Rewards are read from the first block of the epoch. Returns None when
        the current epoch has not produced that block yet. A concluded epoch
        without a block in its first SLOT_OFFSET slots raises MissingEpochData.
        The cache is filled on every successful RPC lookup.
        """
        cached = self._cache.get_epoch_rewards(epoch)
        if cached is not None:
            inc_counter("rewards_cache_hits_total")
            return cached
        inc_counter("rewards_cache_misses_total")

        start_slot = int(epoch) * int(epoch_info.slots_in_epoch)

        # Right after an epoch starts its end slot may not exist yet, so the
        # range stays open until SLOT_OFFSET slots have elapsed.
        end_slot: Optional[int]
        if epoch_info.epoch == epoch and epoch_info.slot_index < SLOT_OFFSET:
            end_slot = None
        else:
            end_slot = start_slot + SLOT_OFFSET

        blocks = self._client.get_blocks(start_slot, end_slot)
        if blocks:
            rewards = list(self._client.get_block(blocks[0]).rewards)
            self._cache.put_epoch_rewards(epoch, rewards)
            log.debug("cached %d rewards of epoch %d from slot %d", len(rewards), epoch, blocks[0])
            return rewards

        if end_slot is None:
            log.debug("epoch %d has no block yet", epoch)
            return None

        raise MissingEpochData(
            "no_blocks_found",
            f"no blocks found for epoch {epoch}",
            {"start_slot": start_slot, "end_slot": end_slot},
        )
