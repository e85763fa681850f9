import logging
from collections.abc import Callable

from .constants import APP_NAME, BARE_UPSTREAM_REMOTE, LOCAL_MIRROR_REMOTE
from .errors import BootstrapError
from .repo import RepositoryPair

logger = logging.getLogger(APP_NAME)


def has_history(pair: RepositoryPair) -> bool:
    """Reports whether the bare mirror holds at least one commit."""
    return pair.bare.commit_count() > 0


def pull(pair: RepositoryPair) -> None:
    """Fetches every branch from origin into the bare mirror, then fast-forwards
    the working tree from the mirror.

    Raises:
        BootstrapError: If origin is unreachable or the pull is not a fast-forward.
    """
    try:
        pair.bare.fetch(BARE_UPSTREAM_REMOTE, "+refs/heads/*:refs/heads/*")
    except RuntimeError as e:
        raise BootstrapError(
            f"Could not fetch from {pair.remote_url}. Check that the deploy key is "
            f"registered and the host is reachable, then run 'allwaysup activate'. "
            f"({e})"
        ) from e

    branch = pair.work.current_branch()
    try:
        pair.work.pull_ff_only(LOCAL_MIRROR_REMOTE, branch)
    except RuntimeError as e:
        raise BootstrapError(
            f"Fast-forward pull of '{branch}' into {pair.work.path} is not possible. "
            f"Manual intervention required. ({e})"
        ) from e
    logger.info(f"Pulled '{branch}' from {pair.remote_url}.")


def maybe_bootstrap(pair: RepositoryPair, confirm: Callable[[], bool]) -> bool:
    """Decides, once, whether activation may proceed.

    A mirror with history proceeds immediately, without asking. An empty mirror
    asks the operator whether to pull now; declining skips activation.

    Args:
        pair (RepositoryPair): The wired repositories.
        confirm (Callable[[], bool]): Asks the operator to pull now.

    Returns:
        bool: True if the recurring jobs may be activated.

    Raises:
        BootstrapError: If the accepted pull fails.
    """
    if has_history(pair):
        logger.info("Bare mirror has history. Proceeding to activation.")
        return True

    if not confirm():
        logger.info("Pull declined. Activation skipped; run 'allwaysup activate'.")
        return False

    pull(pair)
    return True
