"""Read-only IMAP session over stdlib imaplib, plus its reconnecting owner."""

from __future__ import annotations

import imaplib
import re
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from .config import ImapConfig
from .envelope import parse_header_block
from .errors import MailboxConnectionError

logger = structlog.get_logger()

# PEEK keeps the \Seen flag untouched.
HEADER_FETCH_ITEMS = "(BODY.PEEK[HEADER.FIELDS (FROM TO CC)])"

_FETCH_SEQ_RE = re.compile(rb"^(\d+)\s+\(")
_FETCH_EMPTY_RE = re.compile(
    rb'^(\d+)\s+\(.*BODY\[HEADER\.FIELDS[^\]]*\]\s+(?:""|NIL)\s*\)\s*$',
    re.IGNORECASE,
)

_IMAP_ERRORS = (imaplib.IMAP4.error, OSError)


@dataclass
class MessageSummary:
    """Header summary of one message.  ``index`` is 0-based."""

    index: int
    headers: dict[str, str] = field(default_factory=dict)


class MailboxSession:
    """A connected, authenticated mailbox opened read-only.

    Message indexes on this interface are 0-based; they are translated to
    1-based IMAP sequence numbers on the wire.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | None = None
        self._message_count: int = 0

    @property
    def message_count(self) -> int:
        return self._message_count

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Connect over implicit TLS, login, and EXAMINE the configured mailbox."""
        try:
            self._conn = imaplib.IMAP4_SSL(
                self._config.host,
                self._config.port,
                timeout=self._config.timeout_seconds,
            )
            self._conn.login(self._config.username, self._config.password.get_secret_value())
            status, data = self._conn.select(_quote_mailbox(self._config.mailbox), readonly=True)
        except _IMAP_ERRORS as exc:
            self.close()
            raise MailboxConnectionError(
                f"Could not open {self._config.mailbox} on {self._config.host}:{self._config.port}: {exc}"
            ) from exc

        if status != "OK":
            self.close()
            raise MailboxConnectionError(
                f"Could not open {self._config.mailbox}: {_describe(data)}"
            )
        self._message_count = _parse_count(data, self._message_count)
        logger.info(
            "session_opened",
            host=self._config.host,
            mailbox=self._config.mailbox,
            messages=self._message_count,
        )

    def close(self) -> None:
        """Close the mailbox and logout.  Errors while disposing are ignored."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            conn.close()
        except _IMAP_ERRORS:
            pass
        try:
            conn.logout()
        except _IMAP_ERRORS as exc:
            logger.debug("session_logout_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    def fetch_headers(self, start: int, end: int) -> list[MessageSummary]:
        """Fetch From/To/Cc for messages ``start..end`` (0-based, inclusive).

        The range is clamped to the current message count; an empty list
        means there is nothing at or after *start*.
        """
        if self._conn is None:
            raise MailboxConnectionError("Session is not open")
        try:
            count = self._refresh_count()
            if start >= count:
                return []
            last = min(end, count - 1)
            status, data = self._conn.fetch(f"{start + 1}:{last + 1}", HEADER_FETCH_ITEMS)
        except _IMAP_ERRORS as exc:
            raise MailboxConnectionError(f"Fetching messages {start}-{end} failed: {exc}") from exc

        if status != "OK":
            raise MailboxConnectionError(f"Fetching messages {start}-{end} failed: {_describe(data)}")

        summaries = _parse_fetch_response(data)
        logger.debug("headers_fetched", start=start, end=last, fetched=len(summaries))
        return summaries

    def _refresh_count(self) -> int:
        assert self._conn is not None
        self._conn.noop()
        _, data = self._conn.response("EXISTS")
        self._message_count = _parse_count(data, self._message_count)
        return self._message_count


class SessionManager:
    """Owns the single mailbox session and reconnects on demand."""

    def __init__(
        self,
        config: ImapConfig,
        *,
        session_factory: Callable[[ImapConfig], MailboxSession] = MailboxSession,
    ) -> None:
        self._config = config
        self._session_factory = session_factory
        self._session: MailboxSession | None = None
        self._connects: int = 0

    @property
    def connects(self) -> int:
        """Number of connection attempts made so far."""
        return self._connects

    def ensure_session(self) -> MailboxSession:
        """Return the open session, connecting first if there is none."""
        if self._session is not None:
            return self._session

        self._connects += 1
        session = self._session_factory(self._config)
        session.open()
        self._session = session
        return session

    def invalidate(self) -> None:
        """Dispose of the current session so the next call reconnects."""
        if self._session is None:
            return
        session, self._session = self._session, None
        session.close()
        logger.info("session_invalidated", host=self._config.host)

    def close(self) -> None:
        self.invalidate()

    def __enter__(self) -> SessionManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _quote_mailbox(name: str) -> str:
    if name.startswith('"') or not re.search(r"[\s\"\\]", name):
        return name
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _parse_count(data: list | None, default: int) -> int:
    """Return the newest numeric EXISTS value in *data*, else *default*."""
    for item in reversed(data or []):
        if item is None:
            continue
        try:
            return int(item)
        except (TypeError, ValueError):
            continue
    return default


def _parse_fetch_response(data: list) -> list[MessageSummary]:
    summaries: list[MessageSummary] = []
    for item in data or []:
        # Literal payloads arrive as (b"<seq> (BODY[...] {n}", b"<headers>")
        if isinstance(item, tuple) and len(item) >= 2:
            match = _FETCH_SEQ_RE.match(item[0])
            if match is None:
                continue
            raw = item[1]
        elif isinstance(item, bytes):
            # No matching header fields: b'<seq> (BODY[...] "")' or NIL
            match = _FETCH_EMPTY_RE.match(item)
            if match is None:
                continue
            raw = b""
        else:
            continue
        summaries.append(
            MessageSummary(
                index=int(match.group(1)) - 1,
                headers=parse_header_block(raw),
            )
        )
    return summaries


def _describe(data: list | None) -> str:
    parts = [
        item.decode(errors="replace") if isinstance(item, bytes) else str(item)
        for item in data or []
        if item is not None
    ]
    return " ".join(parts) or "no response text"
