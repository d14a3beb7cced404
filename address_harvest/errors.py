"""Exception hierarchy for the address harvester."""

from __future__ import annotations

from pathlib import Path


class HarvestError(Exception):
    """Base class for all harvester errors."""


class ConfigError(HarvestError):
    """Configuration is missing or invalid.  Raised before any network activity."""


class MailboxConnectionError(HarvestError, ConnectionError):
    """Connecting, authenticating, opening or fetching from the mailbox failed.

    Auth, TLS, DNS and protocol failures are not distinguished; the scan
    engine retries all of them.
    """


class CorruptCheckpointError(HarvestError):
    """A checkpoint file exists but cannot be read back."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Checkpoint file {path} cannot be loaded: {reason}")
        self.path = path
        self.reason = reason
