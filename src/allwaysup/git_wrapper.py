import logging
import subprocess
from pathlib import Path

from .constants import APP_NAME
from .system import as_user

logger = logging.getLogger(APP_NAME)


def is_repository(path: Path) -> bool:
    """Reports whether `path` is a working-tree repository or a bare repository.

    Args:
        path (Path): The directory to inspect.

    Returns:
        bool: True if `path/.git` exists or `path` has the bare repository layout.
    """
    if (path / ".git").exists():
        return True
    return is_bare_repository(path)


def is_bare_repository(path: Path) -> bool:
    return (
        (path / "HEAD").is_file()
        and (path / "objects").is_dir()
        and (path / "refs").is_dir()
    )


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    This class executes Git operations using `subprocess`, optionally as another
    user (via sudo) so that a root installer leaves files owned by the service
    identity. It works with both working trees and bare repositories.

    Attributes:
        path (Path): The repository root (working tree) or the bare repository path.
        run_as (str | None): Account the git commands execute as.
    """

    def __init__(self, path: Path, run_as: str | None = None):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository.
            run_as (str | None, optional): Run git as this user. Defaults to None.

        Raises:
            ValueError: If the specified path is not a git repository.
        """
        self.path = path
        self.run_as = run_as
        if not is_repository(self.path):
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def init(
        cls, path: Path, bare: bool = False, run_as: str | None = None
    ) -> "GitRepo":
        """Creates a new repository at `path` and returns a wrapper for it.

        Args:
            path (Path): Target directory (created if missing).
            bare (bool, optional): Create a bare repository. Defaults to False.
            run_as (str | None, optional): Run git as this user. Defaults to None.

        Raises:
            RuntimeError: If `git init` fails.
        """
        cmd = ["git", "init"]
        if bare:
            cmd.append("--bare")
        cmd.append(str(path))
        try:
            subprocess.run(
                as_user(cmd, run_as),
                cwd=path.parent,
                capture_output=True,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"Git error: {e.stderr or e}") from e
        return cls(path, run_as=run_as)

    def _run(self, args: list[str], capture: bool = True) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to capture and return stdout.
                                        Defaults to True.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            RuntimeError: If the git command returns a non-zero exit code.
        """
        try:
            res = subprocess.run(
                as_user(["git", *args], self.run_as),
                cwd=self.path,
                capture_output=capture,
                text=True,
                check=True,
            )
            return res.stdout.strip() if capture else ""
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"Git error: {e.stderr or e}") from e

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch."""
        return self._run(["branch", "--show-current"])

    def set_config(self, key: str, value: str) -> None:
        """Sets a repository-local configuration value."""
        self._run(["config", key, value])

    def get_config(self, key: str) -> str | None:
        """Reads a configuration value, or None if it is unset."""
        try:
            return self._run(["config", "--get", key])
        except RuntimeError:
            return None

    def add_all(self) -> None:
        """Stages all changes (modified, deleted, and untracked files)."""
        self._run(["add", "-A"])

    def add(self, *paths: str) -> None:
        self._run(["add", "--", *paths])

    def commit(self, message: str) -> None:
        """Creates a new commit from the index with the provided message."""
        self._run(["commit", "-m", message])

    def has_staged_changes(self) -> bool:
        """Reports whether the index differs from the last commit.

        Returns:
            bool: True if at least one path is staged.
        """
        return bool(self._run(["diff", "--cached", "--name-only"]))

    def commit_count(self) -> int:
        """Counts the commits reachable from any ref.

        Returns:
            int: The number of commits, 0 for a repository without history.
        """
        output = self._run(["rev-list", "--all", "--count"])
        return int(output) if output else 0

    def list_remotes(self) -> list[str]:
        output = self._run(["remote"])
        return output.splitlines() if output else []

    def remote_url(self, name: str) -> str | None:
        try:
            return self._run(["remote", "get-url", name])
        except RuntimeError:
            return None

    def remove_remote(self, name: str) -> None:
        """Removes a remote, ignoring the failure raised when it does not exist."""
        try:
            self._run(["remote", "remove", name])
        except RuntimeError as e:
            logger.debug(f"Remote '{name}' not removed from {self.path}: {e}")

    def set_remote(self, name: str, url: str) -> None:
        """Points a remote at `url`, replacing any previous definition.

        Args:
            name (str): The remote name.
            url (str): The remote URL or local path.
        """
        self.remove_remote(name)
        self._run(["remote", "add", name, url])

    def fetch(self, remote: str, refspec: str | None = None) -> None:
        cmd = ["fetch", remote]
        if refspec:
            cmd.append(refspec)
        self._run(cmd)

    def pull_ff_only(self, remote: str, branch: str) -> None:
        """Merges `remote/branch` only if the local history is a strict prefix."""
        self._run(["pull", "--ff-only", remote, branch])

    def push_all(self, remote: str) -> str:
        """Pushes every local branch to `remote`.

        Authentication comes from the repository's `core.sshCommand`.

        Returns:
            str: The captured output of the push.
        """
        return self._run(["push", "--all", remote])
