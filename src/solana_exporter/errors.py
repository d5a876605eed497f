from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class ExporterError(Exception):
    """Canonical error type for the exporter.

    Every failure inside a tick is raised as one of the subclasses below and
    propagates unmodified to the polling loop.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class StorageError(ExporterError):
    """Cache store unreachable or corrupt."""


class SerializationError(ExporterError):
    """Stored or received bytes do not decode to the expected shape."""


class RpcError(ExporterError):
    """Network or node failure."""


class MissingEpochData(ExporterError):
    """A concluded epoch has no block in its first slots."""


class HistoricalGap(ExporterError):
    """A lookback epoch has no rewards."""


class NoCurrentRewards(ExporterError):
    """The current epoch has rewards but none of voting kind."""


class AddressParseError(ExporterError):
    """Malformed address string."""


class ConfigError(ExporterError):
    pass
