# src/solana_exporter/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

import yaml

from solana_exporter.errors import ConfigError

Json = Dict[str, Any]

# Directory under $HOME where config and database live by default.
EXPORTER_DATA_DIR = ".solana-exporter"
CONFIG_FILE_NAME = "config.json"
DATABASE_FILE_NAME = "persistent.db"

_ALLOWED_MODES = {"dev", "prod"}
_ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class Whitelist:
    """Set of allowed account addresses. An empty whitelist allows everything."""

    items: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, values: Optional[Iterable[Any]]) -> "Whitelist":
        if values is None:
            return cls()
        if isinstance(values, str):
            values = values.split(",")
        return cls(frozenset(s for s in (str(v).strip() for v in values) if s))

    def contains(self, value: str) -> bool:
        return not self.items or value in self.items

    def to_list(self) -> list[str]:
        return sorted(self.items)


def _as_int(v: Any, default: int) -> int:
    if v is None or isinstance(v, bool):
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def default_data_dir() -> Path:
    return Path.home() / EXPORTER_DATA_DIR


def default_config_path() -> Path:
    return default_data_dir() / CONFIG_FILE_NAME


def default_database_path() -> Path:
    return default_data_dir() / DATABASE_FILE_NAME


@dataclass(frozen=True)
class ExporterConfig:
    # Node JSON-RPC URL.
    rpc: str
    # Prometheus scrape target, "host:port".
    target: str

    vote_account_whitelist: Whitelist
    staking_account_whitelist: Whitelist

    enable_rewards: bool
    enable_skipped_slots: bool

    mode: str  # "dev" | "prod"
    db_path: str
    log_level: str
    interval_ms: int
    rpc_timeout_ms: int

    def target_host_port(self) -> Tuple[str, int]:
        host, _, port = self.target.rpartition(":")
        return host or "0.0.0.0", int(port)


def validate_exporter_config(cfg: ExporterConfig) -> None:
    """Fail-fast validation for operator config."""

    rpc = str(cfg.rpc or "").strip()
    if not rpc.startswith(("http://", "https://")):
        raise ConfigError("bad_rpc", f"rpc must be an http(s) URL; got: {cfg.rpc!r}")

    host, sep, port = str(cfg.target or "").rpartition(":")
    if not sep or not host:
        raise ConfigError("bad_target", f"target must be host:port; got: {cfg.target!r}")
    try:
        p = int(port)
    except ValueError:
        raise ConfigError("bad_target", f"target port must be an integer; got: {port!r}") from None
    if p <= 0 or p > 65535:
        raise ConfigError("bad_target", f"target port must be 1..65535; got: {p}")

    if str(cfg.mode or "").strip().lower() not in _ALLOWED_MODES:
        raise ConfigError("bad_mode", f"mode must be one of {sorted(_ALLOWED_MODES)}; got: {cfg.mode!r}")

    if str(cfg.log_level or "").strip().upper() not in _ALLOWED_LOG_LEVELS:
        raise ConfigError("bad_log_level", f"log_level must be one of {sorted(_ALLOWED_LOG_LEVELS)}")

    if int(cfg.interval_ms) < 100:
        # Tighter polling just hammers the node.
        raise ConfigError("bad_interval", f"interval_ms must be >= 100; got: {cfg.interval_ms}")

    if int(cfg.rpc_timeout_ms) <= 0:
        raise ConfigError("bad_rpc_timeout", f"rpc_timeout_ms must be > 0; got: {cfg.rpc_timeout_ms}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ConfigError("bad_db_path", "db_path must be a non-empty string")


def default_exporter_config() -> ExporterConfig:
    return ExporterConfig(
        rpc="http://localhost:8899",
        target="0.0.0.0:9179",
        vote_account_whitelist=Whitelist(),
        staking_account_whitelist=Whitelist(),
        enable_rewards=True,
        enable_skipped_slots=True,
        mode="prod",
        db_path=str(default_database_path()),
        log_level="INFO",
        interval_ms=1_000,
        rpc_timeout_ms=30_000,
    )


def _read_raw(path: Path) -> Json:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            raw = yaml.safe_load(text)
        else:
            raw = json.loads(text)
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigError("bad_config_file", f"could not parse config file {str(path)!r}", str(e)) from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("bad_config_file", "exporter config must be a mapping")
    return raw


def _env_overrides(raw: Json) -> Json:
    out = dict(raw)
    for key in (
        "rpc",
        "target",
        "enable_rewards",
        "enable_skipped_slots",
        "mode",
        "db_path",
        "log_level",
        "interval_ms",
        "rpc_timeout_ms",
        "vote_account_whitelist",
        "staking_account_whitelist",
    ):
        v = os.environ.get(f"SOLEX_{key.upper()}")
        if v is not None and v.strip():
            out[key] = v
    return out


def exporter_config_from_mapping(raw: Json) -> ExporterConfig:
    d = default_exporter_config()
    cfg = ExporterConfig(
        rpc=_as_str(raw.get("rpc"), d.rpc),
        target=_as_str(raw.get("target"), d.target),
        vote_account_whitelist=Whitelist.of(raw.get("vote_account_whitelist")),
        staking_account_whitelist=Whitelist.of(raw.get("staking_account_whitelist")),
        enable_rewards=_as_bool(raw.get("enable_rewards"), d.enable_rewards),
        enable_skipped_slots=_as_bool(raw.get("enable_skipped_slots"), d.enable_skipped_slots),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        log_level=_as_str(raw.get("log_level"), d.log_level).strip().upper(),
        interval_ms=_as_int(raw.get("interval_ms"), d.interval_ms),
        rpc_timeout_ms=_as_int(raw.get("rpc_timeout_ms"), d.rpc_timeout_ms),
    )
    validate_exporter_config(cfg)
    return cfg


def read_exporter_config_file(path: str) -> ExporterConfig:
    p = Path(path).expanduser()
    if not p.is_file():
        raise ConfigError(
            "config_missing",
            f"Could not find config file at {str(p)!r}. If running for the first time, run "
            "`solana-exporter generate` to initialise the config file and then put real values there.",
        )
    return exporter_config_from_mapping(_env_overrides(_read_raw(p)))


def load_exporter_config(*, config_path: Optional[str] = None) -> ExporterConfig:
    p = config_path or os.environ.get("SOLEX_CONFIG_PATH") or str(default_config_path())
    return read_exporter_config_file(p)


def template_config() -> Json:
    d = default_exporter_config()
    return {
        "rpc": d.rpc,
        "target": d.target,
        "vote_account_whitelist": [],
        "staking_account_whitelist": [],
        "enable_rewards": d.enable_rewards,
        "enable_skipped_slots": d.enable_skipped_slots,
        "mode": d.mode,
        "db_path": d.db_path,
        "log_level": d.log_level,
        "interval_ms": d.interval_ms,
        "rpc_timeout_ms": d.rpc_timeout_ms,
    }


def write_template_config(path: str) -> Path:
    """Write a template config (JSON, or YAML for a .yaml/.yml path)."""
    p = Path(path).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)
    tpl = template_config()
    if p.suffix.lower() in {".yaml", ".yml"}:
        p.write_text(yaml.safe_dump(tpl, sort_keys=False), encoding="utf-8")
    else:
        p.write_text(json.dumps(tpl, indent=2) + "\n", encoding="utf-8")
    return p
