"""Shared test fixtures for the address harvester test suite."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import structlog

from address_harvest.checkpoint import CheckpointStore
from address_harvest.config import ImapConfig, RetryConfig, ScanConfig
from address_harvest.errors import MailboxConnectionError
from address_harvest.session import MessageSummary, SessionManager


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        username="testuser",
        password="testpass",
        mailbox="INBOX",
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0,
        max_wait_seconds=0,
        multiplier=0,
    )


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "Outputs"


@pytest.fixture
def scan_config(output_dir: Path) -> ScanConfig:
    return ScanConfig(output_dir=output_dir, window_size=3)


@pytest.fixture
def store(output_dir: Path) -> CheckpointStore:
    return CheckpointStore(output_dir)


# ------------------------------------------------------------------
# In-memory mailbox
# ------------------------------------------------------------------


def make_headers(i: int, *, cc: str = "") -> dict[str, str]:
    return {
        "From": f"User {i} <user{i}@example.com>",
        "To": "Shared Inbox <shared@example.com>",
        "Cc": cc,
    }


class FakeMailbox:
    """Mailbox double: a list of header dicts plus programmable failures."""

    def __init__(self, messages: list[dict[str, str]] | None = None) -> None:
        self.messages = list(messages or [])
        self.always_fail = False
        self.connect_failures = 0
        self.fetch_failures = 0
        self.opens = 0
        self.closes = 0
        self.fetches: list[tuple[int, int]] = []

    def session_factory(self, config: ImapConfig) -> FakeSession:
        return FakeSession(self)

    def manager(self, config: ImapConfig) -> SessionManager:
        return SessionManager(config, session_factory=self.session_factory)


class FakeSession:
    def __init__(self, mailbox: FakeMailbox) -> None:
        self._mailbox = mailbox

    def open(self) -> None:
        self._mailbox.opens += 1
        if self._mailbox.always_fail:
            raise MailboxConnectionError("connection refused")
        if self._mailbox.connect_failures > 0:
            self._mailbox.connect_failures -= 1
            raise MailboxConnectionError("connection refused")

    def close(self) -> None:
        self._mailbox.closes += 1

    def fetch_headers(self, start: int, end: int) -> list[MessageSummary]:
        self._mailbox.fetches.append((start, end))
        if self._mailbox.fetch_failures > 0:
            self._mailbox.fetch_failures -= 1
            raise MailboxConnectionError("connection reset by peer")
        last = min(end, len(self._mailbox.messages) - 1)
        return [
            MessageSummary(index=i, headers=self._mailbox.messages[i])
            for i in range(start, last + 1)
        ]


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox([make_headers(i) for i in range(7)])


@pytest.fixture
def restore_logging():
    """Undo setup_logging() so later tests keep pytest's own handlers."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
