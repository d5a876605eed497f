from __future__ import annotations

import logging
from typing import FrozenSet, Optional, Protocol

from solana_exporter.gauges import PrometheusGauges
from solana_exporter.schemas import BlockProduction, EpochInfo

log = logging.getLogger("solana_exporter.slots")


class BlockProductionRpc(Protocol):
    def get_block_production(self) -> BlockProduction: ...


def skipped_percent(leader_slots: int, blocks_produced: int) -> Optional[float]:
    """Share of leader slots without a block, in percent. None before the first leader slot."""
    if leader_slots <= 0:
        return None
    skipped = max(0, leader_slots - blocks_produced)
    return skipped / leader_slots * 100.0


class SkippedSlotsMonitor:
    """Leader slots and skipped-slot percentage per node identity.

    Figures cover the current epoch so far. Both families are cleared when
    the epoch changes so identities without leader slots in the new epoch
    drop out.
    """

    def __init__(self, *, client: BlockProductionRpc, gauges: PrometheusGauges) -> None:
        self._client = client
        self._gauges = gauges
        self._epoch: Optional[int] = None

    def tick(self, epoch_info: EpochInfo, identities: Optional[FrozenSet[str]] = None) -> None:
        """`identities` limits the exported nodes; None exports all of them."""
        epoch = int(epoch_info.epoch)
        if self._epoch is not None and epoch != self._epoch:
            log.debug("epoch %d started, clearing leader slot gauges", epoch)
            self._gauges.leader_slots.clear()
            self._gauges.skipped_slot_percent.clear()
        self._epoch = epoch

        production = self._client.get_block_production()
        for identity in sorted(production.by_identity):
            if identities is not None and identity not in identities:
                continue
            leader_slots, blocks_produced = production.by_identity[identity]
            self._gauges.leader_slots.set(identity, leader_slots)
            percent = skipped_percent(leader_slots, blocks_produced)
            if percent is not None:
                self._gauges.skipped_slot_percent.set(identity, percent)
