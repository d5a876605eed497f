# src/solana_exporter/__main__.py
from __future__ import annotations

import argparse
import logging
import threading
from typing import TYPE_CHECKING, List, Optional, Tuple

import uvicorn

from solana_exporter.env import load_dotenv_if_present

if TYPE_CHECKING:
    from solana_exporter.config import ExporterConfig
    from solana_exporter.loop import ExporterLoop
    from solana_exporter.rewards.cache import EpochCache

log = logging.getLogger("solana_exporter")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="solana-exporter", description="Prometheus exporter for Solana validators")
    p.add_argument("-c", "--config", default=None, help="config file (default ~/.solana-exporter/config.json)")
    p.add_argument("-d", "--database", default=None, help="cache database file (overrides config db_path)")

    sub = p.add_subparsers(dest="command")
    gen = sub.add_parser("generate", help="write a template config file and exit")
    gen.add_argument("-o", "--output", default=None, help="output path (default ~/.solana-exporter/config.json)")
    return p


def _generate(output: Optional[str]) -> int:
    from solana_exporter.config import default_config_path, write_template_config

    path = write_template_config(output or str(default_config_path()))
    print(f"wrote template config to {path}")
    return 0


def build_runtime(cfg: "ExporterConfig", database_path: Optional[str] = None) -> Tuple["ExporterLoop", "EpochCache"]:
    """Wire storage, node client, monitors and the polling loop from a config."""
    from solana_exporter.cluster import ClusterMonitor
    from solana_exporter.gauges import PrometheusGauges
    from solana_exporter.loop import ExporterLoop
    from solana_exporter.rewards.cache import EpochCache
    from solana_exporter.rewards.monitor import RewardsMonitor
    from solana_exporter.rpc import SolanaRpcClient
    from solana_exporter.slots import SkippedSlotsMonitor
    from solana_exporter.storage.sqlite_db import SqliteDB

    db = SqliteDB(path=database_path or cfg.db_path, mode=cfg.mode)
    if not db.exists():
        log.warning("Database could not be found at %s. A new one will be generated!", db.path)
    cache = EpochCache(db=db)

    client = SolanaRpcClient(cfg.rpc, timeout_s=cfg.rpc_timeout_ms / 1000.0)
    gauges = PrometheusGauges()
    cluster = ClusterMonitor(client=client, gauges=gauges, vote_account_whitelist=cfg.vote_account_whitelist)
    skipped_slots = SkippedSlotsMonitor(client=client, gauges=gauges) if cfg.enable_skipped_slots else None
    monitor = None
    if cfg.enable_rewards:
        monitor = RewardsMonitor(
            client=client,
            gauges=gauges,
            cache=cache,
            staking_account_whitelist=cfg.staking_account_whitelist,
            vote_account_whitelist=cfg.vote_account_whitelist,
        )
    loop = ExporterLoop(
        client=client,
        monitor=monitor,
        cluster=cluster,
        skipped_slots=skipped_slots,
        interval_ms=cfg.interval_ms,
    )
    return loop, cache


def _serve(config_path: Optional[str], database_path: Optional[str]) -> int:
    from solana_exporter.api.app import create_app
    from solana_exporter.config import load_exporter_config
    from solana_exporter.logging_util import configure_structured_logging, log_event

    cfg = load_exporter_config(config_path=config_path)
    configure_structured_logging(cfg.log_level)
    loop, cache = build_runtime(cfg, database_path)

    host, port = cfg.target_host_port()
    server = uvicorn.Server(uvicorn.Config(create_app(loop=loop, cache=cache), host=host, port=port, log_level="warning"))
    server_thread = threading.Thread(target=server.run, name="solana-exporter-http", daemon=True)
    server_thread.start()
    log_event(log, "exporter_started", rpc=cfg.rpc, target=cfg.target, mode=cfg.mode)

    try:
        while not loop.wait(0.5):
            if not server_thread.is_alive():
                log.error("http server exited")
                loop.stop()
                return 1
    except KeyboardInterrupt:
        loop.stop()
        return 0
    finally:
        server.should_exit = True
        server_thread.join(timeout=5.0)

    return 1 if loop.unhealthy else 0


def main(argv: Optional[List[str]] = None) -> int:
    # Load .env early so SOLEX_* vars exist before anything reads them.
    load_dotenv_if_present()

    args = _build_parser().parse_args(argv)
    if args.command == "generate":
        return _generate(args.output)
    return _serve(args.config, args.database)


if __name__ == "__main__":
    raise SystemExit(main())
