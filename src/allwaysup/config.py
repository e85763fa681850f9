import logging
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    BACKUP_DIR,
    CONFIG_FILE,
    DEFAULT_EXCLUDES,
    DEFAULT_REPO_URL,
    DEFAULT_SCHEDULE,
    DEFAULT_SHELL,
    GITREPO_DIR,
    INSTALL_DIR,
    LOG_DIR,
    LOG_RETENTION,
    REMOTE_HOST,
    SSH_DIR,
    TOOLS_DIR,
)

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class IdentityConfig:
    """Service account settings.

    Attributes:
        user (str): The service account name.
        home (str): Home path override. Empty means `/home/<user>`.
        shell (str): Login shell for a newly created account.
    """

    user: str = APP_NAME
    home: str = ""
    shell: str = DEFAULT_SHELL


@dataclass(frozen=True)
class RepoConfig:
    """Repository pair settings.

    Attributes:
        url (str): External origin URL. Empty means "ask the operator".
        name (str): Name of the bare mirror (`gitrepo/<name>.git`).
        host (str): External host whose HTTPS URLs are rewritten to SSH form.
        author_name (str): Author identity for automated commits.
        author_email (str): Author email for automated commits.
    """

    url: str = ""
    name: str = APP_NAME
    host: str = REMOTE_HOST
    author_name: str = APP_NAME
    author_email: str = f"{APP_NAME}@localhost"

    @property
    def default_url(self) -> str:
        return self.url or DEFAULT_REPO_URL


@dataclass(frozen=True)
class KeysConfig:
    """SSH identity settings.

    Attributes:
        algorithm (str): ssh-keygen key type.
        label (str): Installation label encoded into the key file name.
        host_key_types (str): Key types requested from ssh-keyscan.
    """

    algorithm: str = "ed25519"
    label: str = APP_NAME
    host_key_types: str = "rsa"


@dataclass(frozen=True)
class MirrorConfig:
    """Mirror job settings.

    Attributes:
        source (str): Tree to mirror. Empty means the service home.
        target (str): Mirror location. Empty means `<home>/gitrepo`.
        exclude (tuple[str, ...]): rsync exclude patterns.
        include (tuple[str, ...]): rsync include patterns, evaluated before excludes.
        protect (tuple[str, ...]): Target-side patterns never deleted.
        retention (int): Compressed log archives kept per job.
    """

    source: str = ""
    target: str = ""
    exclude: tuple[str, ...] = tuple(DEFAULT_EXCLUDES)
    include: tuple[str, ...] = ()
    protect: tuple[str, ...] = (".git/", "*.git/")
    retention: int = LOG_RETENTION


@dataclass(frozen=True)
class ScheduleConfig:
    """Recurring execution settings.

    Attributes:
        expression (str): Cron time expression.
        executable (str): Path of the `allwaysup` executable. Empty means PATH lookup.
    """

    expression: str = DEFAULT_SCHEDULE
    executable: str = ""


@dataclass(frozen=True)
class Config:
    """Immutable configuration record built once at startup.

    Attributes:
        identity (IdentityConfig): Service account settings.
        repo (RepoConfig): Repository settings.
        keys (KeysConfig): SSH key settings.
        mirror (MirrorConfig): Mirror job settings.
        schedule (ScheduleConfig): Scheduler settings.
    """

    identity: IdentityConfig = field(default_factory=IdentityConfig)
    repo: RepoConfig = field(default_factory=RepoConfig)
    keys: KeysConfig = field(default_factory=KeysConfig)
    mirror: MirrorConfig = field(default_factory=MirrorConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)

    # --- Derived Paths ---
    @property
    def home(self) -> Path:
        if self.identity.home:
            return Path(self.identity.home)
        return Path("/home") / self.identity.user

    @property
    def install_dir(self) -> Path:
        return self.home / INSTALL_DIR

    @property
    def backup_dir(self) -> Path:
        return self.home / BACKUP_DIR

    @property
    def tools_dir(self) -> Path:
        return self.home / TOOLS_DIR

    @property
    def gitrepo_dir(self) -> Path:
        return self.home / GITREPO_DIR

    @property
    def bare_dir(self) -> Path:
        return self.gitrepo_dir / f"{self.repo.name}.git"

    @property
    def work_dir(self) -> Path:
        return self.home

    @property
    def log_dir(self) -> Path:
        return self.home / LOG_DIR

    @property
    def ssh_dir(self) -> Path:
        return self.home / SSH_DIR

    @property
    def mirror_source(self) -> Path:
        return Path(self.mirror.source) if self.mirror.source else self.home

    @property
    def mirror_target(self) -> Path:
        return Path(self.mirror.target) if self.mirror.target else self.gitrepo_dir

    def with_home(self, home: Path) -> "Config":
        """Returns a copy whose derived paths hang off `home`."""
        if home == self.home:
            return self
        return replace(self, identity=replace(self.identity, home=str(home)))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from defaults and an optional TOML file.

        Args:
            path (Path | None): The configuration file. Defaults to CONFIG_FILE.

        Returns:
            Config: The fully merged configuration object.
        """
        path = path or CONFIG_FILE
        instance = cls()
        if path.exists():
            instance = instance._merge_from_file(path)
        return instance

    def _merge_from_file(self, path: Path) -> "Config":
        """Parses a TOML file and returns a copy with its values merged in.

        Args:
            path (Path): Path to the TOML file.

        Returns:
            Config: The merged configuration, or self if the file is unusable.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
            return self
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return self

        if not data:
            return self

        unknown = set(data) - set(self.__dataclass_fields__)
        if unknown:
            logger.warning(
                f"Unknown config sections: {', '.join(sorted(unknown))}. Ignoring."
            )

        updates: dict[str, Any] = {}
        if "identity" in data:
            updates["identity"] = self._update_dataclass(
                "identity", self.identity, data["identity"]
            )
        if "repo" in data:
            updates["repo"] = self._update_dataclass("repo", self.repo, data["repo"])
        if "keys" in data:
            updates["keys"] = self._update_dataclass("keys", self.keys, data["keys"])
        if "schedule" in data:
            updates["schedule"] = self._update_dataclass(
                "schedule", self.schedule, data["schedule"]
            )
        if "mirror" in data:
            section = dict(data["mirror"])
            # Extract exclude handling so the default policy is extended, not lost.
            new_excludes = section.pop("exclude", [])
            if not isinstance(new_excludes, list):
                logger.warning(
                    "Config error in [mirror].exclude: expected a list. Ignoring."
                )
                new_excludes = []
            replace_defaults = bool(section.pop("replace_default_excludes", False))
            mirror = self._update_dataclass("mirror", self.mirror, section)
            updates["mirror"] = replace(
                mirror,
                exclude=merge_patterns(
                    () if replace_defaults else mirror.exclude, new_excludes
                ),
            )

        return replace(self, **updates)

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and coercing list values."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue
            current = getattr(instance, k)
            if isinstance(current, tuple):
                if not isinstance(v, list):
                    logger.warning(
                        f"Config error in [{section_name}].{k}: expected a list. "
                        "Falling back to default."
                    )
                    continue
                v = tuple(str(item) for item in v)
            elif isinstance(current, int) and not isinstance(v, int):
                logger.warning(
                    f"Config error in [{section_name}].{k}: expected an integer. "
                    "Falling back to default."
                )
                continue
            filtered_updates[k] = v

        return replace(instance, **filtered_updates)


def merge_patterns(base: tuple[str, ...], extra: list[str]) -> tuple[str, ...]:
    """Appends patterns to a base list, dropping duplicates while keeping order."""
    return tuple(dict.fromkeys([*base, *(str(p) for p in extra)]))
