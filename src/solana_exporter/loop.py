from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Protocol

from solana_exporter.cluster import ClusterMonitor
from solana_exporter.logging_util import log_event
from solana_exporter.metrics import inc_counter, set_gauge
from solana_exporter.rewards.monitor import RewardsMonitor
from solana_exporter.schemas import EpochInfo
from solana_exporter.slots import SkippedSlotsMonitor

log = logging.getLogger("solana_exporter.loop")


class EpochInfoSource(Protocol):
    def get_epoch_info(self) -> EpochInfo: ...


class ExporterLoop:
    """Polls the node once per interval and drives the monitors.

    Each tick reads the epoch descriptor, then runs the cluster, skipped-slot
    and rewards monitors in that order; any of them may be absent. Ticks run
    serially on one thread. Any error is fatal: it is logged with
    its traceback, recorded in `last_error`, and the loop stops. `done` is
    set when the loop exits for any reason.
    """

    def __init__(
        self,
        *,
        client: EpochInfoSource,
        monitor: Optional[RewardsMonitor] = None,
        cluster: Optional[ClusterMonitor] = None,
        skipped_slots: Optional[SkippedSlotsMonitor] = None,
        interval_ms: int = 1_000,
    ) -> None:
        self._client = client
        self._monitor = monitor
        self._cluster = cluster
        self._skipped_slots = skipped_slots
        self._interval_s = max(0.0, float(interval_ms) / 1000.0)

        self._t: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self.done = threading.Event()
        self._started = False

        self.last_error: str = ""
        self.last_epoch: Optional[int] = None
        self.ticks = 0

    @property
    def started(self) -> bool:
        return self._started

    @property
    def running(self) -> bool:
        t = self._t
        return t is not None and t.is_alive()

    @property
    def unhealthy(self) -> bool:
        return bool(self.last_error)

    def status(self) -> dict:
        return {
            "running": self.running,
            "unhealthy": self.unhealthy,
            "last_error": self.last_error,
            "last_epoch": self.last_epoch,
            "ticks": self.ticks,
            "rewards_enabled": self._monitor is not None,
            "skipped_slots_enabled": self._skipped_slots is not None,
        }

    def run_once(self) -> None:
        """One tick: fetch the epoch descriptor and run every monitor."""
        epoch_info = self._client.get_epoch_info()
        self.last_epoch = int(epoch_info.epoch)
        set_gauge("solana_exporter_epoch", epoch_info.epoch)

        identities = None
        if self._cluster is not None:
            vote_accounts = self._cluster.tick(epoch_info)
            identities = self._cluster.node_identities(vote_accounts)

        if self._skipped_slots is not None:
            self._skipped_slots.tick(epoch_info, identities)

        if self._monitor is not None:
            exported = self._monitor.tick(epoch_info)
            if not exported:
                log.debug("epoch %d has no rewards yet", epoch_info.epoch)

        self.ticks += 1
        inc_counter("loop_ticks_total")

    def start(self) -> bool:
        if self._started:
            return True
        self._t = threading.Thread(target=self._run, name="solana-exporter-loop", daemon=True)
        self._t.start()
        self._started = True
        log_event(log, "loop_started", interval_s=self._interval_s, rewards_enabled=self._monitor is not None)
        return True

    def stop(self) -> None:
        self._stop.set()
        t = self._t
        if t is not None and t is not threading.current_thread():
            t.join(timeout=2.0)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.done.wait(timeout)

    def _fail(self, err: Exception) -> None:
        self.last_error = f"{type(err).__name__}:{err}"
        inc_counter("loop_errors_total")
        set_gauge("solana_exporter_unhealthy", 1)
        log.exception("metrics loop failed, stopping: %s", self.last_error)

    def _run(self) -> None:
        next_ts = time.monotonic()
        try:
            while not self._stop.is_set():
                now = time.monotonic()
                if now < next_ts:
                    self._stop.wait(min(0.25, next_ts - now))
                    continue
                next_ts = now + self._interval_s

                log.debug("Updating metrics")
                try:
                    self.run_once()
                except Exception as err:
                    self._fail(err)
                    break
        finally:
            self.done.set()
