from __future__ import annotations

import math
import threading
import time
from typing import Dict, Optional, Tuple

LabelKey = Tuple[Tuple[str, str], ...]

_lock = threading.Lock()
_counters: Dict[str, int] = {}
_gauges: Dict[str, Dict[LabelKey, float]] = {}
_help: Dict[str, str] = {}
_int_gauges: set[str] = set()
_started_ms = int(time.time() * 1000)


def _label_key(labels: Optional[Dict[str, str]]) -> LabelKey:
    if not labels:
        return ()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def inc_counter(name: str, value: int = 1) -> None:
    n = str(name or "").strip()
    if not n:
        return
    with _lock:
        _counters[n] = int(_counters.get(n, 0)) + int(value)


def register_gauge(name: str, help_text: str = "", *, integer: bool = False) -> None:
    n = str(name or "").strip()
    if not n:
        raise ValueError("gauge name must be non-empty")
    with _lock:
        _gauges.setdefault(n, {})
        _help[n] = str(help_text)
        if integer:
            _int_gauges.add(n)
        else:
            _int_gauges.discard(n)


def set_gauge(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    """Set a gauge sample. Overwrites any prior value for the same labels."""
    n = str(name or "").strip()
    if not n:
        return
    with _lock:
        series = _gauges.setdefault(n, {})
        if n in _int_gauges:
            series[_label_key(labels)] = int(value)
        else:
            series[_label_key(labels)] = float(value)


def get_gauge(name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
    with _lock:
        return _gauges.get(str(name), {}).get(_label_key(labels))


def get_counter(name: str) -> int:
    with _lock:
        return int(_counters.get(str(name), 0))


def reset() -> None:
    """Drop every sample. Registered gauge definitions are kept."""
    with _lock:
        _counters.clear()
        for series in _gauges.values():
            series.clear()


def snapshot() -> dict:
    with _lock:
        return {
            "ts_ms": int(time.time() * 1000),
            "started_ms": int(_started_ms),
            "uptime_ms": int(time.time() * 1000) - int(_started_ms),
            "counters": dict(_counters),
            "gauges": {k: dict(v) for k, v in _gauges.items()},
            "help": dict(_help),
        }


def clear_gauge(name: str) -> None:
    """Drop every sample of one gauge family; its definition stays registered."""
    with _lock:
        series = _gauges.get(str(name))
        if series is not None:
            series.clear()


class Gauge:
    """A gauge without labels, e.g. the current epoch."""

    def __init__(self, name: str, help_text: str, *, integer: bool = False) -> None:
        self.name = name
        register_gauge(name, help_text, integer=integer)

    def set(self, value: float) -> None:
        set_gauge(self.name, value)

    def get(self) -> Optional[float]:
        return get_gauge(self.name)


class GaugeVec:
    """A gauge family with a single label, e.g. `pubkey`."""

    def __init__(self, name: str, help_text: str, label: str, *, integer: bool = False) -> None:
        self.name = name
        self.label = label
        self.integer = integer
        register_gauge(name, help_text, integer=integer)

    def set(self, label_value: str, value: float) -> None:
        set_gauge(self.name, value, {self.label: label_value})

    def get(self, label_value: str) -> Optional[float]:
        return get_gauge(self.name, {self.label: label_value})

    def clear(self) -> None:
        clear_gauge(self.name)


def _escape_label(v: str) -> str:
    return v.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_value(v: float) -> str:
    if isinstance(v, int):
        return str(v)
    if math.isnan(v):
        return "NaN"
    if math.isinf(v):
        return "+Inf" if v > 0 else "-Inf"
    return repr(float(v))


def format_prometheus(prefix: str = "solex_") -> str:
    """Prometheus text exposition.

    Internal counters carry `prefix`; registered gauges keep their own names.
    """
    pre = str(prefix or "").strip()
    snap = snapshot()
    lines: list[str] = []

    lines.append(f"{pre}uptime_ms {int(snap['uptime_ms'])}")

    counters = snap["counters"]
    for k in sorted(counters.keys()):
        lines.append(f"{pre}{k} {int(counters[k])}")

    gauges = snap["gauges"]
    for name in sorted(gauges.keys()):
        help_text = snap["help"].get(name, "")
        if help_text:
            lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} gauge")
        for key in sorted(gauges[name].keys()):
            value = _format_value(gauges[name][key])
            if key:
                labels = ",".join(f'{k}="{_escape_label(v)}"' for k, v in key)
                lines.append(f"{name}{{{labels}}} {value}")
            else:
                lines.append(f"{name} {value}")

    return "\n".join(lines) + "\n"
