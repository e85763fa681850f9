import datetime
import logging

from . import joblog
from .config import Config
from .constants import APP_NAME, COMMIT_LOG_NAME, LOCK_FILE_NAME, ORIGIN_REMOTE
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


def commit_and_push(
    repo: GitRepo, log: logging.Logger, now: datetime.datetime | None = None
) -> int:
    """Commits and pushes the working tree, but only if something changed.

    Args:
        repo (GitRepo): The working repository.
        log (logging.Logger): The job logger.
        now (datetime | None): Timestamp for the commit message. Defaults to now.

    Returns:
        int: 0 when nothing changed or the push succeeded, 1 otherwise.
    """
    repo.add_all()
    if not repo.has_staged_changes():
        log.info("No changes since last commit. Nothing to do.")
        return 0

    timestamp = (now or datetime.datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    repo.commit(f"Automated backup {timestamp}")
    log.info(f"Committed changes in {repo.path} ({timestamp}).")

    try:
        output = repo.push_all(ORIGIN_REMOTE)
    except RuntimeError as e:
        log.error(f"PUSH ERROR: {e}")
        return 1

    if output:
        log.info(output)
    log.info(f"Pushed all branches to {ORIGIN_REMOTE}.")
    return 0


def run(config: Config) -> int:
    """Runs the commit/push job once against the configured working tree.

    Args:
        config (Config): The configuration record.

    Returns:
        int: The job's exit status.
    """
    log_file = config.log_dir / COMMIT_LOG_NAME
    try:
        with joblog.run_lock(config.log_dir / LOCK_FILE_NAME) as acquired:
            if not acquired:
                logger.warning("Another allwaysup job is running. Skipping commit.")
                return 0
            joblog.rotate(log_file, config.mirror.retention)
            with joblog.job_logger("commit", log_file) as log:
                status = _commit_job(config, log)
    except OSError as e:
        logger.error(f"Commit could not start: {e}")
        return 1

    if status != 0:
        logger.error(f"Commit/push failed. See {log_file}.")
    return status


def _commit_job(config: Config, log: logging.Logger) -> int:
    log.info(f"Starting commit/push of {config.work_dir}")
    try:
        repo = GitRepo(config.work_dir)
        return commit_and_push(repo, log)
    except (RuntimeError, ValueError) as e:
        log.error(f"ERROR: {e}")
        return 1
