"""Per-job log files: rotation into gzip archives, bounded retention, run lock."""

import datetime
import fcntl
import gzip
import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .constants import APP_NAME, LOG_RETENTION, LOG_TIMESTAMP_FORMAT


def archive_log(log_file: Path, now: datetime.datetime | None = None) -> Path | None:
    """Compresses the current log into a timestamped `.gz` archive.

    Args:
        log_file (Path): The live log file.
        now (datetime | None): Timestamp for the archive name. Defaults to now.

    Returns:
        Path | None: The archive path, or None if there was no log to rotate.
    """
    if not log_file.exists():
        return None

    stamp = (now or datetime.datetime.now()).strftime(LOG_TIMESTAMP_FORMAT)
    archive = log_file.with_name(f"{log_file.name}.{stamp}.gz")
    n = 1
    while archive.exists():
        archive = log_file.with_name(f"{log_file.name}.{stamp}-{n}.gz")
        n += 1

    with open(log_file, "rb") as src, gzip.open(archive, "wb") as dst:
        shutil.copyfileobj(src, dst)
    log_file.unlink()
    return archive


def list_archives(log_file: Path) -> list[Path]:
    """Returns the compressed archives of `log_file`, newest first."""
    archives = [p for p in log_file.parent.glob(f"{log_file.name}.*.gz") if p.is_file()]
    return sorted(archives, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)


def prune_archives(log_file: Path, keep: int = LOG_RETENTION) -> list[Path]:
    """Deletes every archive beyond the `keep` most recent ones, regardless of age.

    Returns:
        list[Path]: The deleted archives.
    """
    stale = list_archives(log_file)[keep:]
    for path in stale:
        path.unlink(missing_ok=True)
    return stale


def rotate(log_file: Path, keep: int = LOG_RETENTION) -> None:
    """Archives the previous run's log, then bounds the archive set to `keep`."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    archive_log(log_file)
    prune_archives(log_file, keep)


@contextmanager
def job_logger(job: str, log_file: Path) -> Iterator[logging.Logger]:
    """Attaches a file handler writing `[YYYY-MM-DD_HH-MM-SS] message` lines.

    The job logger does not propagate while attached, so per-line output
    never reaches the console handler.

    Args:
        job (str): Job name, used for the child logger.
        log_file (Path): The file receiving this run's lines.

    Yields:
        logging.Logger: The job logger.
    """
    logger = logging.getLogger(f"{APP_NAME}.{job}")
    logger.setLevel(logging.INFO)
    handler = logging.FileHandler(log_file)
    handler.setFormatter(
        logging.Formatter("[%(asctime)s] %(message)s", LOG_TIMESTAMP_FORMAT)
    )
    logger.addHandler(handler)
    logger.propagate = False
    try:
        yield logger
    finally:
        logger.removeHandler(handler)
        handler.close()
        logger.propagate = True


@contextmanager
def run_lock(lock_file: Path) -> Iterator[bool]:
    """Takes a non-blocking exclusive lock shared by the recurring jobs.

    Yields:
        bool: True if this process holds the lock, False if another run does.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_file, "w") as f:
        try:
            fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            acquired = False
        else:
            acquired = True
        try:
            yield acquired
        finally:
            if acquired:
                fcntl.flock(f, fcntl.LOCK_UN)
