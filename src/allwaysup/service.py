import logging
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from .config import Config
from .constants import APP_NAME
from .errors import ProvisioningError
from .system import is_root

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class ScheduleEntry:
    """One line of the service identity's crontab.

    Attributes:
        expression (str): Cron time expression.
        command (str): Shell command run at each trigger.
        signature (str): Substring identifying an existing entry for this job.
    """

    expression: str
    command: str
    signature: str

    @property
    def line(self) -> str:
        return f"{self.expression} {self.command}"


def get_executable(config: Config) -> str:
    """Locates the installed `allwaysup` executable.

    The configured executable wins, then PATH. Under sudo, PATH is usually the
    restricted `secure_path`, so the running script itself is the last resort.

    Returns:
        str: Absolute path of the executable.

    Raises:
        ProvisioningError: If the executable cannot be found.
    """
    exe = config.schedule.executable or shutil.which(APP_NAME)
    if not exe:
        script = Path(sys.argv[0]).absolute()
        if script.name == APP_NAME and script.is_file():
            exe = str(script)
    if not exe:
        raise ProvisioningError(
            f"Could not find '{APP_NAME}' on PATH. Ensure the package is installed."
        )
    return exe


def build_entry(
    config: Config, executable: str, config_path: Path | None = None
) -> ScheduleEntry:
    """Builds the entry running the mirror job, then (on success) the commit job."""
    base = shlex.quote(executable)
    if config_path is not None:
        base += f" --config {shlex.quote(str(config_path))}"
    return ScheduleEntry(
        expression=config.schedule.expression,
        command=f"{base} sync && {base} commit",
        signature=executable,
    )


def _crontab_cmd(user: str | None) -> list[str]:
    if user and is_root():
        return ["crontab", "-u", user]
    return ["crontab"]


def read_schedule(user: str | None) -> list[str]:
    """Reads the user's crontab.

    Returns:
        list[str]: The table's lines, empty if the user has no crontab yet.

    Raises:
        ProvisioningError: If crontab fails for another reason.
    """
    res = subprocess.run(
        [*_crontab_cmd(user), "-l"], capture_output=True, text=True
    )
    if res.returncode != 0:
        if "no crontab" in res.stderr.lower():
            return []
        raise ProvisioningError(f"Could not read crontab: {res.stderr.strip()}")
    return res.stdout.splitlines()


def write_schedule(user: str | None, lines: list[str]) -> None:
    """Replaces the user's crontab with `lines` in a single crontab invocation.

    Raises:
        ProvisioningError: If crontab rejects the table.
    """
    content = "\n".join(lines) + "\n"
    try:
        subprocess.run(
            [*_crontab_cmd(user), "-"],
            input=content,
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError as e:
        raise ProvisioningError(f"Could not write crontab: {e.stderr.strip()}") from e


def is_scheduled(entry: ScheduleEntry, user: str | None) -> bool:
    return any(entry.signature in line for line in read_schedule(user))


def ensure_scheduled(entry: ScheduleEntry, user: str | None) -> bool:
    """Adds `entry` to the user's crontab unless an entry for this job exists.

    Args:
        entry (ScheduleEntry): The entry to register.
        user (str | None): Owner of the crontab. None means the current user.

    Returns:
        bool: True if the entry was added, False if it was already present.
    """
    lines = read_schedule(user)
    if any(entry.signature in line for line in lines):
        logger.info("Schedule entry already present.")
        return False

    write_schedule(user, [*lines, entry.line])
    logger.info(f"Scheduled: {entry.line}")
    return True
