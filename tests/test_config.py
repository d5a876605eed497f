from __future__ import annotations

import json
from pathlib import Path

import pytest

from solana_exporter.config import (
    Whitelist,
    default_exporter_config,
    exporter_config_from_mapping,
    load_exporter_config,
    read_exporter_config_file,
    template_config,
    write_template_config,
)
from solana_exporter.errors import ConfigError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in ("RPC", "TARGET", "MODE", "DB_PATH", "LOG_LEVEL", "INTERVAL_MS", "RPC_TIMEOUT_MS", "ENABLE_REWARDS",
                "ENABLE_SKIPPED_SLOTS",
                "VOTE_ACCOUNT_WHITELIST", "STAKING_ACCOUNT_WHITELIST", "CONFIG_PATH"):
        monkeypatch.delenv(f"SOLEX_{key}", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


def test_generated_template_reads_back_as_defaults(tmp_path: Path) -> None:
    path = write_template_config(str(tmp_path / "cfg" / "config.json"))

    assert json.loads(path.read_text(encoding="utf-8")) == template_config()
    assert read_exporter_config_file(str(path)) == default_exporter_config()


def test_yaml_config_with_whitelists(tmp_path: Path) -> None:
    p = tmp_path / "config.yaml"
    p.write_text(
        "rpc: https://api.mainnet-beta.solana.com\n"
        "target: '127.0.0.1:9100'\n"
        "vote_account_whitelist: [VoteA, VoteB]\n"
        "enable_rewards: false\n"
        "enable_skipped_slots: no\n"
        "mode: dev\n",
        encoding="utf-8",
    )

    cfg = read_exporter_config_file(str(p))

    assert cfg.rpc == "https://api.mainnet-beta.solana.com"
    assert cfg.target_host_port() == ("127.0.0.1", 9100)
    assert cfg.vote_account_whitelist.to_list() == ["VoteA", "VoteB"]
    assert cfg.staking_account_whitelist == Whitelist()
    assert cfg.enable_rewards is False
    assert cfg.enable_skipped_slots is False
    assert cfg.mode == "dev"


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = write_template_config(str(tmp_path / "config.json"))
    monkeypatch.setenv("SOLEX_RPC", "http://10.0.0.5:8899")
    monkeypatch.setenv("SOLEX_STAKING_ACCOUNT_WHITELIST", "StakeA, StakeB")
    monkeypatch.setenv("SOLEX_INTERVAL_MS", "2500")
    monkeypatch.setenv("SOLEX_ENABLE_SKIPPED_SLOTS", "false")

    cfg = read_exporter_config_file(str(p))

    assert cfg.rpc == "http://10.0.0.5:8899"
    assert cfg.staking_account_whitelist.to_list() == ["StakeA", "StakeB"]
    assert cfg.interval_ms == 2500
    assert cfg.enable_skipped_slots is False


def test_config_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = write_template_config(str(tmp_path / "elsewhere.json"))
    monkeypatch.setenv("SOLEX_CONFIG_PATH", str(p))
    assert load_exporter_config().rpc == "http://localhost:8899"


def test_missing_config_points_at_generate(tmp_path: Path) -> None:
    with pytest.raises(ConfigError) as ei:
        load_exporter_config(config_path=str(tmp_path / "nope.json"))
    assert ei.value.code == "config_missing"
    assert "solana-exporter generate" in ei.value.reason


def test_unparseable_config_file(tmp_path: Path) -> None:
    p = tmp_path / "config.json"
    p.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError) as ei:
        read_exporter_config_file(str(p))
    assert ei.value.code == "bad_config_file"


@pytest.mark.parametrize(
    "override,code",
    [
        ({"rpc": "ftp://node"}, "bad_rpc"),
        ({"target": "9179"}, "bad_target"),
        ({"target": "0.0.0.0:http"}, "bad_target"),
        ({"target": "0.0.0.0:70000"}, "bad_target"),
        ({"mode": "staging"}, "bad_mode"),
        ({"log_level": "chatty"}, "bad_log_level"),
        ({"interval_ms": 10}, "bad_interval"),
        ({"rpc_timeout_ms": -1}, "bad_rpc_timeout"),
    ],
)
def test_invalid_values_fail_fast(override: dict, code: str) -> None:
    with pytest.raises(ConfigError) as ei:
        exporter_config_from_mapping(override)
    assert ei.value.code == code


def test_whitelist_semantics() -> None:
    assert Whitelist().contains("anything")
    wl = Whitelist.of("a, b,,")
    assert wl.contains("a") and wl.contains("b")
    assert not wl.contains("c")
    assert Whitelist.of(None) == Whitelist()
