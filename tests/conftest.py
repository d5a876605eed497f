from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "solana_exporter" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _fresh_metrics():
    from solana_exporter import metrics

    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def db(tmp_path: Path):
    from solana_exporter.storage.sqlite_db import SqliteDB

    return SqliteDB(path=str(tmp_path / "cache" / "persistent.db"))


@pytest.fixture
def cache(db):
    from solana_exporter.rewards.cache import EpochCache

    return EpochCache(db=db)
