"""Entry point for the address harvester.

Usage::

    python -m address_harvest [--config connection.env] [--output-dir Outputs] [--no-wait]

Scans the configured mailbox and writes every distinct sender/recipient
address to ``<output-dir>/contacts-<count>.csv``.  An interrupted run can
simply be started again; it resumes from the last checkpoint.  Do not run
two instances against the same output directory.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import structlog

from .checkpoint import CheckpointStore
from .config import DEFAULT_CONFIG_FILE, load_config
from .errors import ConfigError, HarvestError
from .logging import bind_run_context, setup_logging
from .scanner import ScanEngine
from .session import SessionManager

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_SCAN_FAILED = 1
EXIT_CONFIG_ERROR = 2

RESUME_HINT = "You can try running the program again. It will continue from the point of failure."


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="address-harvest",
        description="Collect every email address found in a mailbox's From/To/Cc headers.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(DEFAULT_CONFIG_FILE),
        help=f"dotenv file with IMAP_HOST, IMAP_PORT, IMAP_USERNAME, IMAP_PASSWORD (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument("--output-dir", type=Path, help="directory for checkpoint CSV files")
    parser.add_argument("--no-wait", action="store_true", help="exit without waiting for Enter")
    parser.add_argument("--json-logs", action="store_true", help="emit JSON log lines")
    parser.add_argument("--log-level", help="log level (default: from config, INFO)")
    return parser.parse_args(argv)


def _acknowledge(no_wait: bool) -> None:
    if no_wait or not sys.stdin.isatty():
        return
    try:
        input("Press Enter to close.")
    except EOFError:
        pass


def _print_progress(consumed: int, addresses: int) -> None:
    print(f"{consumed} emails processed ({addresses} addresses so far)", flush=True)


def run(argv: list[str] | None = None) -> int:
    """Run one scan and return the process exit code."""
    args = _parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"{args.config} could not be loaded. {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(json=args.json_logs or config.json_logs, level=args.log_level or config.log_level)

    store = CheckpointStore(args.output_dir or config.scan.output_dir, prefix=config.scan.file_prefix)
    bind_run_context(host=config.imap.host, mailbox=config.imap.mailbox, output_dir=str(store.directory))
    engine = ScanEngine(
        SessionManager(config.imap),
        store,
        scan_config=config.scan,
        retry_config=config.retry,
        on_progress=_print_progress,
    )

    try:
        checkpoint = store.discover_latest()
        if checkpoint.consumed_count > 0:
            print(
                f"{checkpoint.consumed_count} emails were already processed earlier. "
                "These will be skipped"
            )
        report = engine.run(checkpoint)
    except (HarvestError, OSError) as exc:
        logger.error("scan_aborted", error=str(exc), state=engine.state.value)
        print(exc, file=sys.stderr)
        print(RESUME_HINT)
        _acknowledge(args.no_wait)
        return EXIT_SCAN_FAILED

    if not report.succeeded:
        print(report.error, file=sys.stderr)
        print(RESUME_HINT)
        _acknowledge(args.no_wait)
        return EXIT_SCAN_FAILED

    print("Entire inbox processed")
    print(f"{report.address_count} addresses written to {report.checkpoint_path}")
    _acknowledge(args.no_wait)
    return EXIT_OK


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
