# src/solana_exporter/storage/__init__.py
"""Durable storage for the exporter (single SQLite file, one table per cache namespace)."""
