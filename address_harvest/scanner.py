"""Resumable batch scan: fetch a window, extract addresses, checkpoint, repeat."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog
from tenacity import RetryError

from .addresses import AddressSet
from .checkpoint import Checkpoint, CheckpointStore
from .config import RetryConfig, ScanConfig
from .envelope import extract_addresses
from .errors import MailboxConnectionError
from .retry import with_retry
from .session import MessageSummary, SessionManager

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int], None]


class ScanState(str, Enum):
    """Scan engine state machine."""

    IDLE = "idle"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    CHECKPOINTING = "checkpointing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class WindowFetched:
    summaries: list[MessageSummary]


@dataclass
class WindowExhausted:
    error: BaseException
    attempts: int


WindowOutcome = WindowFetched | WindowExhausted


@dataclass
class ScanReport:
    """Result of one :meth:`ScanEngine.run`."""

    state: ScanState
    consumed_count: int
    address_count: int
    windows: int
    checkpoint_path: Path | None = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is ScanState.DONE


class ScanEngine:
    """Drives the window loop against one mailbox and one checkpoint directory.

    Windows are processed strictly in order.  Each fetch is retried with a
    fresh session up to ``retry.max_attempts`` times; once the budget is
    spent the run ends in ``FAILED`` and the last persisted checkpoint is
    left as it was, so the next run resumes from there.
    """

    def __init__(
        self,
        sessions: SessionManager,
        store: CheckpointStore,
        *,
        scan_config: ScanConfig,
        retry_config: RetryConfig,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._sessions = sessions
        self._store = store
        self._window_size = scan_config.window_size
        self._retry_config = retry_config
        self._on_progress = on_progress
        self.state: ScanState = ScanState.IDLE
        self.checkpoint: Checkpoint | None = None

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, checkpoint: Checkpoint | None = None) -> ScanReport:
        """Scan until an empty window is seen or the retry budget runs out.

        *checkpoint* defaults to the latest one discovered in the store.
        The session is always closed before returning.
        """
        self.checkpoint = checkpoint if checkpoint is not None else self._store.discover_latest()
        windows = 0
        logger.info("scan_started", consumed=self.checkpoint.consumed_count)

        try:
            while True:
                self.state = ScanState.FETCHING
                outcome = self._fetch_window(self.checkpoint.consumed_count)

                if isinstance(outcome, WindowExhausted):
                    self.state = ScanState.FAILED
                    logger.error(
                        "scan_failed",
                        consumed=self.checkpoint.consumed_count,
                        attempts=outcome.attempts,
                        error=str(outcome.error),
                    )
                    return self._report(windows, error=outcome.error)

                self.state = ScanState.EXTRACTING
                batch, highest = self._extract(outcome.summaries, self.checkpoint.consumed_count)
                if highest is None:
                    self.checkpoint = self._store.compact(self.checkpoint)
                    self.state = ScanState.DONE
                    logger.info(
                        "scan_done",
                        consumed=self.checkpoint.consumed_count,
                        addresses=len(self.checkpoint.addresses),
                    )
                    return self._report(windows)

                self.state = ScanState.CHECKPOINTING
                self._advance(batch, highest)
                windows += 1
        except Exception:
            self.state = ScanState.FAILED
            raise
        finally:
            self._sessions.close()

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _fetch_window(self, start: int) -> WindowOutcome:
        end = start + self._window_size - 1

        @with_retry(
            self._retry_config,
            retryable_exceptions=(MailboxConnectionError,),
            reraise=False,
        )
        def _fetch() -> list[MessageSummary]:
            session = self._sessions.ensure_session()
            try:
                return session.fetch_headers(start, end)
            except MailboxConnectionError:
                self._sessions.invalidate()
                raise

        try:
            return WindowFetched(_fetch())
        except RetryError as exc:
            last = exc.last_attempt
            return WindowExhausted(error=last.exception(), attempts=last.attempt_number)

    def _extract(self, summaries: list[MessageSummary], start: int) -> tuple[AddressSet, int | None]:
        """Collect addresses from *summaries*; also return the highest index seen."""
        batch = AddressSet()
        highest: int | None = None
        for summary in summaries:
            if summary.index < start:
                continue
            highest = summary.index if highest is None else max(highest, summary.index)
            batch.merge(extract_addresses(summary.headers))
        return batch, highest

    def _advance(self, batch: AddressSet, highest: int) -> None:
        assert self.checkpoint is not None
        self.checkpoint.consumed_count = max(self.checkpoint.consumed_count, highest + 1)
        added = self.checkpoint.addresses.merge(batch)
        self._store.persist(self.checkpoint)
        logger.info(
            "window_checkpointed",
            consumed=self.checkpoint.consumed_count,
            new_addresses=added,
            addresses=len(self.checkpoint.addresses),
        )
        if self._on_progress is not None:
            self._on_progress(self.checkpoint.consumed_count, len(self.checkpoint.addresses))

    def _report(self, windows: int, *, error: BaseException | None = None) -> ScanReport:
        assert self.checkpoint is not None
        return ScanReport(
            state=self.state,
            consumed_count=self.checkpoint.consumed_count,
            address_count=len(self.checkpoint.addresses),
            windows=windows,
            checkpoint_path=self._store.current_path,
            error=error,
        )
