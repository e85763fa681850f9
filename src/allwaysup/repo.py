import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from .constants import (
    APP_NAME,
    BARE_UPSTREAM_REMOTE,
    INITIAL_COMMIT_MESSAGE,
    LOCAL_MIRROR_REMOTE,
    ORIGIN_REMOTE,
    README_NAME,
    REMOTE_HOST,
)
from .errors import PreconditionError, ProvisioningError
from .git_wrapper import GitRepo, is_repository
from .keys import ssh_command
from .system import chown

logger = logging.getLogger(APP_NAME)

T = TypeVar("T")


@dataclass(frozen=True)
class RepositoryPair:
    """The working tree, its bare mirror and the shared remote table.

    Attributes:
        work (GitRepo): The checked-out working repository.
        bare (GitRepo): The bare mirror repository.
        remote_url (str): Normalized external origin URL.
    """

    work: GitRepo
    bare: GitRepo
    remote_url: str


def normalize_remote_url(url: str, host: str = REMOTE_HOST) -> str:
    """Rewrites an HTTPS URL on `host` to its SSH form; anything else is unchanged.

    Example: `https://github.com/acme/repo` -> `git@github.com:acme/repo.git`.

    Args:
        url (str): The URL as supplied by the operator.
        host (str): The hosting service's hostname.

    Returns:
        str: The URL used for the `origin` and `upstream` remotes.
    """
    url = url.strip()
    match = re.match(rf"^https://{re.escape(host)}/([^/]+)/([^/]+?)(?:\.git)?/?$", url)
    if not match:
        return url
    owner, name = match.groups()
    return f"git@{host}:{owner}/{name}.git"


def _git(step: str, func: Callable[..., T], *args: Any) -> T:
    try:
        return func(*args)
    except (RuntimeError, ValueError) as e:
        raise ProvisioningError(f"{step} failed: {e}") from e


def ensure_bare(bare_dir: Path, user: str | None = None) -> GitRepo:
    """Creates the bare mirror unless the directory already holds a repository."""
    bare_dir.parent.mkdir(parents=True, exist_ok=True)
    chown(bare_dir.parent, user)
    if is_repository(bare_dir):
        logger.info(f"Bare mirror already present at {bare_dir}")
        return _git("Opening bare mirror", GitRepo, bare_dir, user)
    logger.info(f"Initializing bare mirror at {bare_dir}")
    return _git(
        "git init --bare", lambda: GitRepo.init(bare_dir, bare=True, run_as=user)
    )


def ensure_work(
    work_dir: Path,
    author_name: str,
    author_email: str,
    user: str | None = None,
) -> GitRepo:
    """Creates the working repository with a single initial commit, exactly once.

    Args:
        work_dir (Path): Working tree root.
        author_name (str): Author identity for automated commits.
        author_email (str): Author email for automated commits.
        user (str | None): Service identity the repository belongs to.

    Returns:
        GitRepo: The working repository.
    """
    if is_repository(work_dir):
        logger.info(f"Working repository already present at {work_dir}")
        return _git("Opening working repository", GitRepo, work_dir, user)

    logger.info(f"Initializing working repository at {work_dir}")
    repo = _git("git init", lambda: GitRepo.init(work_dir, run_as=user))
    _git("Setting author name", repo.set_config, "user.name", author_name)
    _git("Setting author email", repo.set_config, "user.email", author_email)

    readme = work_dir / README_NAME
    readme.write_text(f"# {APP_NAME} repo\n")
    chown(readme, user)

    _git("Staging README", repo.add, README_NAME)
    _git("Initial commit", repo.commit, INITIAL_COMMIT_MESSAGE)
    return repo


def ensure_pair(
    work_dir: Path,
    bare_dir: Path,
    remote_url: str,
    author_name: str = APP_NAME,
    author_email: str = f"{APP_NAME}@localhost",
    host: str = REMOTE_HOST,
    ignore: Iterable[str] = (),
    identity_file: Path | None = None,
    user: str | None = None,
) -> RepositoryPair:
    """Ensures the working repository, its bare mirror and their remotes exist.

    Re-running this is safe: repositories are only created when missing and
    remotes are removed (if present) before being added again.

    Args:
        work_dir (Path): Working tree root.
        bare_dir (Path): Bare mirror path.
        remote_url (str): External origin URL as supplied by the operator.
        author_name (str): Author identity for automated commits.
        author_email (str): Author email for automated commits.
        host (str): The hosting service whose HTTPS URLs are rewritten.
        ignore (Iterable[str]): Patterns the working tree never stages.
        identity_file (Path | None): Private key both repositories authenticate
            with. Left unconfigured when None.
        user (str | None): Service identity running git.

    Returns:
        RepositoryPair: The wired pair.

    Raises:
        ProvisioningError: If any git invocation other than a remote removal fails.
    """
    bare = ensure_bare(bare_dir, user)
    work = ensure_work(work_dir, author_name, author_email, user)
    write_ignore_rules(work_dir, ignore, user)

    url = normalize_remote_url(remote_url, host)
    if url != remote_url:
        logger.info(f"Using SSH form of remote: {url}")

    _git("Adding origin", work.set_remote, ORIGIN_REMOTE, url)
    _git("Adding localpush", work.set_remote, LOCAL_MIRROR_REMOTE, str(bare_dir))
    _git("Adding upstream", bare.set_remote, BARE_UPSTREAM_REMOTE, url)

    if identity_file is not None:
        command = ssh_command(identity_file)
        _git("Setting ssh identity", work.set_config, "core.sshCommand", command)
        _git("Setting ssh identity", bare.set_config, "core.sshCommand", command)

    return RepositoryPair(work=work, bare=bare, remote_url=url)


def write_ignore_rules(
    work_dir: Path, patterns: Iterable[str], user: str | None = None
) -> None:
    """Writes `.git/info/exclude` so the commit job never stages excluded paths.

    The file is untracked and fully rewritten on every call.
    """
    exclude_file = work_dir / ".git" / "info" / "exclude"
    exclude_file.parent.mkdir(parents=True, exist_ok=True)
    exclude_file.write_text(
        f"# Managed by {APP_NAME}. Changes are overwritten on install.\n"
        + "".join(f"{p}\n" for p in patterns)
    )
    chown(exclude_file, user)


def open_pair(
    work_dir: Path, bare_dir: Path, user: str | None = None
) -> RepositoryPair:
    """Opens an already provisioned pair without modifying it.

    Raises:
        PreconditionError: If either repository is missing.
    """
    if not is_repository(work_dir) or not is_repository(bare_dir):
        raise PreconditionError(
            f"Repositories not found at {work_dir} and {bare_dir}. "
            "Run 'allwaysup install' first."
        )
    work = GitRepo(work_dir, run_as=user)
    bare = GitRepo(bare_dir, run_as=user)
    url = work.remote_url(ORIGIN_REMOTE) or bare.remote_url(BARE_UPSTREAM_REMOTE) or ""
    return RepositoryPair(work=work, bare=bare, remote_url=url)
