import logging
import subprocess
from collections.abc import Iterable
from pathlib import Path

from . import joblog
from .config import Config
from .constants import APP_NAME, LOCK_FILE_NAME, SYNC_LOG_NAME
from .errors import PreconditionError
from .git_wrapper import is_bare_repository

logger = logging.getLogger(APP_NAME)


def is_mirror_target(path: Path) -> bool:
    """Reports whether `path` is an initialized mirror location.

    A valid target is a working-tree repository or a directory holding a bare
    `*.git` repository. A bare repository itself is not a valid target: its
    internals would be deleted by the mirror.
    """
    if not path.is_dir():
        return False
    if (path / ".git").exists():
        return True
    return any(is_bare_repository(child) for child in path.glob("*.git"))


def check_preconditions(source: Path, target: Path) -> None:
    """Validates the source/target pair before any copy happens.

    Raises:
        PreconditionError: If the paths are identical or the target is not a
            repository location.
    """
    if source.resolve() == target.resolve():
        raise PreconditionError(
            "Source and target directories are identical. Aborting."
        )
    if not is_mirror_target(target):
        raise PreconditionError(
            "Target does not appear to be a Git repository. Aborting."
        )


def build_rsync_command(
    source: Path,
    target: Path,
    exclude: Iterable[str],
    include: Iterable[str] = (),
    protect: Iterable[str] = (),
) -> list[str]:
    """Builds the rsync invocation mirroring `source` into `target`.

    Entries missing from the source (or excluded) are deleted from the target,
    except those matching a protect pattern. Rules are evaluated in order:
    protect, include, exclude.

    Args:
        source (Path): Tree to copy. Its contents, not the directory, are mirrored.
        target (Path): Mirror location.
        exclude (Iterable[str]): Glob patterns never copied.
        include (Iterable[str]): Glob patterns copied even if an exclude matches.
        protect (Iterable[str]): Target-side glob patterns never deleted.

    Returns:
        list[str]: The command line.
    """
    cmd = ["rsync", "-av", "--delete", "--delete-excluded"]
    cmd.extend(f"--filter=P {p}" for p in protect)
    cmd.extend(f"--include={p}" for p in include)
    cmd.extend(f"--exclude={p}" for p in exclude)

    source_str = str(source)
    if not source_str.endswith("/"):
        source_str += "/"
    cmd.extend([source_str, str(target)])
    return cmd


def sync(config: Config, log: logging.Logger) -> int:
    """Performs one mirror copy, logging every line of rsync output.

    Returns:
        int: 0 on success, 1 on a precondition failure, else rsync's exit code.
    """
    source, target = config.mirror_source, config.mirror_target
    log.info(f"Starting sync from {source} to {target}")

    try:
        check_preconditions(source, target)
    except PreconditionError as e:
        log.error(f"ERROR: {e}")
        return 1

    cmd = build_rsync_command(
        source,
        target,
        config.mirror.exclude,
        config.mirror.include,
        config.mirror.protect,
    )
    try:
        res = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        log.error(f"Sync failed: could not run rsync: {e}")
        return 127

    for line in res.stdout.splitlines():
        log.info(line)
    for line in res.stderr.splitlines():
        log.error(line)

    if res.returncode == 0:
        log.info("Sync completed successfully.")
    else:
        log.error(f"Sync failed with exit code {res.returncode}")
    return res.returncode


def run(config: Config) -> int:
    """Runs the mirror job once: rotate logs, check preconditions, copy.

    Args:
        config (Config): The configuration record.

    Returns:
        int: The job's exit status.
    """
    log_file = config.log_dir / SYNC_LOG_NAME
    try:
        with joblog.run_lock(config.log_dir / LOCK_FILE_NAME) as acquired:
            if not acquired:
                logger.warning("Another allwaysup job is running. Skipping sync.")
                return 0
            joblog.rotate(log_file, config.mirror.retention)
            with joblog.job_logger("sync", log_file) as log:
                status = sync(config, log)
    except OSError as e:
        logger.error(f"Sync could not start: {e}")
        return 1

    if status == 0:
        logger.debug(f"Sync completed. See {log_file}.")
    else:
        logger.error(f"Sync failed with exit code {status}. See {log_file}.")
    return status
