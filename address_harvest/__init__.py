"""Address Harvest: resumable IMAP scan that collects every header address.

Public API re-exported here for convenience::

    from address_harvest import CheckpointStore, ScanEngine, SessionManager
"""

from .addresses import Address, AddressSet
from .checkpoint import Checkpoint, CheckpointStore
from .config import HarvestConfig, ImapConfig, RetryConfig, ScanConfig, load_config
from .envelope import extract_addresses, parse_address_list, parse_header_block
from .errors import ConfigError, CorruptCheckpointError, HarvestError, MailboxConnectionError
from .logging import bind_run_context, setup_logging
from .retry import with_retry
from .scanner import ScanEngine, ScanReport, ScanState, WindowExhausted, WindowFetched
from .session import MailboxSession, MessageSummary, SessionManager

__all__ = [
    "Address",
    "AddressSet",
    "Checkpoint",
    "CheckpointStore",
    "ConfigError",
    "CorruptCheckpointError",
    "HarvestConfig",
    "HarvestError",
    "ImapConfig",
    "MailboxConnectionError",
    "MailboxSession",
    "MessageSummary",
    "RetryConfig",
    "ScanConfig",
    "ScanEngine",
    "ScanReport",
    "ScanState",
    "SessionManager",
    "WindowExhausted",
    "WindowFetched",
    "bind_run_context",
    "extract_addresses",
    "load_config",
    "parse_address_list",
    "parse_header_block",
    "setup_logging",
    "with_retry",
]
