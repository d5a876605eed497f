"""
solana_exporter - Prometheus exporter for Solana validators

Polls a node once per second for epoch progress, vote accounts, leader slots,
per-voter staking APY and validator rewards, caches epoch reward data in
SQLite, and serves the gauges on /metrics.

Usage:
    solana-exporter generate            # write ~/.solana-exporter/config.json
    solana-exporter --config cfg.json   # run the exporter
"""

__version__ = "0.4.1"
