import logging
import os
import pwd
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .config import Config
from .constants import APP_NAME, HOME_SKELETON
from .errors import PreconditionError, ProvisioningError

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class ServiceIdentity:
    """The service account owning the repositories and jobs.

    Attributes:
        name (str): Account name.
        home (Path): Home directory of the account.
    """

    name: str
    home: Path


def require_root() -> None:
    """Aborts unless the process has root privileges.

    Raises:
        PreconditionError: If the effective user is not root.
    """
    if os.geteuid() != 0:
        raise PreconditionError("must run as root (try: sudo allwaysup install)")


def is_root() -> bool:
    return os.geteuid() == 0


def as_user(cmd: list[str], user: str | None) -> list[str]:
    """Prefixes a command so it executes as `user`, or returns it unchanged."""
    if not user:
        return cmd
    return ["sudo", "-u", user, *cmd]


def lookup_home(name: str) -> Path | None:
    """Returns the home directory of an existing account, or None if absent."""
    try:
        return Path(pwd.getpwnam(name).pw_dir)
    except KeyError:
        return None


def resolve_home(config: Config) -> Config:
    """Points the configuration at the account's actual home, if it exists.

    The account database wins over the configured home, so jobs and the
    installer always agree on where the repositories live.
    """
    home = lookup_home(config.identity.user)
    if home is None or home == config.home:
        return config
    logger.warning(
        f"Home of '{config.identity.user}' is {home}, configuration expects "
        f"{config.home}. Using {home}."
    )
    return config.with_home(home)


def require_service_identity(config: Config) -> None:
    """Refuses to run a recurring job as root on behalf of the service account.

    Files created by root in the account's log directory would lock the
    scheduled runs out of their own logs.

    Raises:
        PreconditionError: If the process is root and the account is not.
    """
    user = config.identity.user
    if is_root() and user != "root":
        raise PreconditionError(
            f"recurring jobs must run as '{user}' "
            f"(try: sudo -u {user} {APP_NAME} <job>)"
        )


def chown(path: Path, user: str | None, recursive: bool = False) -> None:
    """Gives `path` to `user` and its login group. No-op when `user` is None.

    Raises:
        ProvisioningError: If chown fails.
    """
    if not user:
        return
    cmd = ["chown"]
    if recursive:
        cmd.append("-R")
    cmd.extend([f"{user}:", str(path)])
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        raise ProvisioningError(f"chown {path} failed: {e.stderr.strip() or e}") from e


def create_account(name: str, shell: str, home: str = "") -> None:
    """Creates a system account with a home directory.

    Raises:
        ProvisioningError: If useradd fails.
    """
    cmd = ["useradd", "--system", "--create-home", "--shell", shell]
    if home:
        cmd.extend(["--home-dir", home])
    cmd.append(name)
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except (OSError, subprocess.CalledProcessError) as e:
        detail = getattr(e, "stderr", "") or e
        raise ProvisioningError(f"Could not create user '{name}': {detail}") from e


def ensure_identity(config: Config) -> ServiceIdentity:
    """Ensures the service account and its home skeleton exist.

    An existing account is never modified; its recorded home path is returned.
    The directory skeleton and home ownership are re-applied on every call.

    Args:
        config (Config): The configuration record.

    Returns:
        ServiceIdentity: The account name and its home path.
    """
    name = config.identity.user
    home = lookup_home(name)

    if home is None:
        logger.info(f"Creating system user '{name}'...")
        create_account(name, config.identity.shell, config.identity.home)
        home = lookup_home(name) or config.home
    else:
        logger.info(f"User '{name}' already exists ({home}).")

    if home != config.home:
        logger.warning(
            f"Home of '{name}' is {home}, configuration expects {config.home}. "
            f"Using {home}."
        )

    for sub in HOME_SKELETON:
        (home / sub).mkdir(parents=True, exist_ok=True)

    chown(home, name, recursive=True)
    return ServiceIdentity(name=name, home=home)
