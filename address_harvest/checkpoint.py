"""Crash-safe CSV checkpoints of scan progress.

A checkpoint is a single CSV file named ``<prefix><consumed_count>.csv``
holding every address found in the first ``consumed_count`` messages.

Write protocol
--------------
``persist`` writes the new file under a ``.tmp`` name, fsyncs it, renames
it into place with ``os.replace`` and only then deletes the previous
checkpoint.  A crash can therefore leave two complete checkpoints (the
higher count wins on discovery) or a stray ``.tmp`` file (ignored and
removed), but never a truncated file under a checkpoint name.

``compact`` runs once at the end of a scan: the current file is renamed to
``.backup``, rewritten fresh, and the backup deleted.  If the process dies
between the rename and the rewrite only the backup survives; discovery
refuses to start over and asks the operator to rename it back.
"""

from __future__ import annotations

import csv
import glob
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from .addresses import Address, AddressSet
from .errors import CorruptCheckpointError

logger = structlog.get_logger()

CSV_HEADER = ["Name", "Email"]
TMP_SUFFIX = ".tmp"
BACKUP_SUFFIX = ".backup"
CORRUPT_SUFFIX = ".corrupt"

# Largest value csv.field_size_limit accepts on every platform (a C long).
FIELD_SIZE_LIMIT = 2**31 - 1


@dataclass
class Checkpoint:
    """Durable scan state: messages consumed so far and the addresses found."""

    consumed_count: int = 0
    addresses: AddressSet = field(default_factory=AddressSet)


class CheckpointStore:
    """Discovers, loads and atomically replaces checkpoint files in one directory.

    The directory must be owned by a single running process.
    """

    def __init__(self, directory: str | Path, *, prefix: str = "contacts-") -> None:
        self._directory = Path(directory)
        self._prefix = prefix
        self._name_re = re.compile(rf"^{re.escape(prefix)}(\d+)\.csv$")
        self._current: Path | None = None

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def current_path(self) -> Path | None:
        """Path of the checkpoint file this store last loaded or wrote."""
        return self._current

    def path_for(self, count: int) -> Path:
        return self._directory / f"{self._prefix}{count}.csv"

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def candidates(self) -> list[tuple[int, Path]]:
        """Checkpoint files in the directory, highest count first."""
        if not self._directory.is_dir():
            return []
        found = []
        for path in self._directory.iterdir():
            match = self._name_re.match(path.name)
            if match and path.is_file():
                found.append((int(match.group(1)), path))
        return sorted(found, reverse=True)

    def discover_latest(self) -> Checkpoint:
        """Load the checkpoint with the highest consumed count.

        Returns an empty checkpoint at count 0 when none exists.  A candidate
        that cannot be parsed is set aside (renamed to ``.corrupt``) and the
        next lower one is tried; if none can be parsed the highest one is
        reported via :class:`CorruptCheckpointError`.
        """
        self._directory.mkdir(parents=True, exist_ok=True)
        self._remove_stale_tmp_files()

        candidates = self.candidates()
        self._check_orphaned_backups({count for count, _ in candidates})
        if not candidates:
            self._current = None
            return Checkpoint()

        failures: list[tuple[Path, CorruptCheckpointError]] = []
        for count, path in candidates:
            try:
                addresses = self.read_addresses(path)
            except CorruptCheckpointError as exc:
                logger.warning("checkpoint_unreadable", path=str(path), reason=exc.reason)
                failures.append((path, exc))
                continue

            for bad_path, _ in failures:
                self._set_aside(bad_path)
            for _, stale in candidates:
                if stale is not path and stale.exists():
                    stale.unlink()
                    logger.info("checkpoint_superseded_removed", path=str(stale))
            self._current = path
            logger.info("checkpoint_loaded", path=str(path), consumed=count, addresses=len(addresses))
            return Checkpoint(consumed_count=count, addresses=addresses)

        raise failures[0][1]

    def read_addresses(self, path: Path) -> AddressSet:
        """Parse a checkpoint CSV body.

        Rows with the wrong number of fields are skipped; broken quoting or
        a wrong header row makes the whole file corrupt.  Fields of any
        length are accepted, since ``_write`` does not limit them.
        """
        addresses = AddressSet()
        previous_limit = csv.field_size_limit(FIELD_SIZE_LIMIT)
        try:
            with path.open(encoding="utf-8", newline="") as fh:
                reader = csv.reader(fh, strict=True)
                header = next(reader, None)
                if header != CSV_HEADER:
                    raise CorruptCheckpointError(path, f"unexpected header row {header!r}")
                for row in reader:
                    if not row:
                        continue
                    if len(row) != 2:
                        logger.warning(
                            "checkpoint_row_skipped",
                            path=str(path),
                            line=reader.line_num,
                            fields=len(row),
                        )
                        continue
                    addresses.add(Address(display_name=row[0], address=row[1]))
        except csv.Error as exc:
            raise CorruptCheckpointError(path, f"malformed CSV near line {reader.line_num}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise CorruptCheckpointError(path, f"not valid UTF-8: {exc}") from exc
        finally:
            csv.field_size_limit(previous_limit)
        return addresses

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def persist(self, checkpoint: Checkpoint) -> Path:
        """Write *checkpoint* under its count's name, then drop the previous file."""
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(checkpoint.consumed_count)
        self._write(path, checkpoint.addresses)

        previous, self._current = self._current, path
        if previous is not None and previous != path:
            previous.unlink(missing_ok=True)
        logger.debug(
            "checkpoint_persisted",
            path=str(path),
            consumed=checkpoint.consumed_count,
            addresses=len(checkpoint.addresses),
        )
        return path

    def compact(self, checkpoint: Checkpoint) -> Checkpoint:
        """Rewrite the final checkpoint file from disk, via a backup copy.

        When no file exists yet for *checkpoint* (an empty mailbox) the
        in-memory checkpoint is written instead.
        """
        path = self.path_for(checkpoint.consumed_count)
        if not path.exists():
            self.persist(checkpoint)
            return checkpoint

        addresses = self.read_addresses(path)
        backup = path.with_name(path.name + BACKUP_SUFFIX)
        os.replace(path, backup)
        self._write(path, addresses)
        backup.unlink()
        self._current = path
        logger.info("checkpoint_compacted", path=str(path), addresses=len(addresses))
        return Checkpoint(consumed_count=checkpoint.consumed_count, addresses=addresses)

    def _write(self, path: Path, addresses: AddressSet) -> None:
        tmp = path.with_name(path.name + TMP_SUFFIX)
        with tmp.open("w", encoding="utf-8", newline="") as fh:
            fh.write(",".join(CSV_HEADER) + "\r\n")
            writer = csv.writer(fh, quoting=csv.QUOTE_ALL)
            writer.writerows((a.display_name, a.address) for a in addresses.to_ordered_list())
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)

    # ------------------------------------------------------------------
    # Leftovers from interrupted runs
    # ------------------------------------------------------------------

    def _remove_stale_tmp_files(self) -> None:
        for tmp in self._directory.glob(f"{glob.escape(self._prefix)}*.csv{TMP_SUFFIX}"):
            tmp.unlink()
            logger.warning("stale_checkpoint_tmp_removed", path=str(tmp))

    def _check_orphaned_backups(self, present_counts: set[int]) -> None:
        for backup in self._directory.glob(f"{glob.escape(self._prefix)}*.csv{BACKUP_SUFFIX}"):
            match = self._name_re.match(backup.name[: -len(BACKUP_SUFFIX)])
            if match is None:
                continue
            main = backup.with_name(backup.name[: -len(BACKUP_SUFFIX)])
            if int(match.group(1)) in present_counts:
                logger.warning("compaction_backup_left_behind", backup=str(backup), checkpoint=str(main))
                continue
            raise CorruptCheckpointError(
                backup,
                f"final compaction was interrupted; rename it to {main.name} and run again",
            )

    def _set_aside(self, path: Path) -> None:
        target = path.with_name(path.name + CORRUPT_SUFFIX)
        os.replace(path, target)
        logger.warning("checkpoint_set_aside", path=str(path), moved_to=str(target))
