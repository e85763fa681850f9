import fnmatch
import logging
import re
import shlex
import shutil
import subprocess
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .constants import APP_NAME, NON_KEY_FILES, PRIVATE_KEY_PATTERNS, REMOTE_HOST
from .errors import ProvisioningError
from .system import as_user, chown

logger = logging.getLogger(APP_NAME)


class KeyDecision(Enum):
    """How the active key is obtained for this run."""

    KEEP_EXISTING = "keep"
    REPLACE_EXISTING = "replace"
    GENERATE_NEW = "generate"


@dataclass(frozen=True)
class KeyMaterial:
    """The SSH identity of this installation.

    Attributes:
        owner (str): Owner label encoded into the key name.
        identifier (str): Unique installation token ("" for a kept foreign key).
        private_key (Path): Path of the private key.
        public_key (Path | None): Path of the public key, if one could be found.
    """

    owner: str
    identifier: str
    private_key: Path
    public_key: Path | None

    def public_text(self) -> str | None:
        if self.public_key is None:
            return None
        return self.public_key.read_text().strip()


def owner_from_url(url: str, host: str = REMOTE_HOST) -> str:
    """Extracts the account that owns the repository from an HTTPS or SSH URL.

    Args:
        url (str): Repository URL, e.g. `https://github.com/acme/repo`.
        host (str): The hosting service's hostname.

    Returns:
        str: The owner segment, or "unknown" if the URL does not reference `host`.
    """
    match = re.search(rf"{re.escape(host)}[:/]+([^/]+)", url)
    return match.group(1) if match else "unknown"


def key_name(algorithm: str, label: str, owner: str, token: str) -> str:
    return f"{algorithm}_{label}_{owner}_{token}"


def ssh_command(private_key: Path) -> str:
    """Builds the `core.sshCommand` that makes git authenticate with `private_key`.

    Only this key is offered and ssh never prompts, so a recurring job fails
    fast instead of hanging on a passphrase or host-key question.
    """
    return (
        f"ssh -i {shlex.quote(str(private_key))} "
        "-o IdentitiesOnly=yes -o BatchMode=yes"
    )


def find_private_keys(ssh_dir: Path) -> list[Path]:
    """Lists files in `ssh_dir` that look like private keys or certificates."""
    if not ssh_dir.is_dir():
        return []
    found = []
    for entry in sorted(ssh_dir.iterdir()):
        if not entry.is_file():
            continue
        if entry.suffix == ".pub" or entry.name in NON_KEY_FILES:
            continue
        if any(fnmatch.fnmatch(entry.name, p) for p in PRIVATE_KEY_PATTERNS):
            found.append(entry)
    return found


def find_public_key(private_key: Path, ssh_dir: Path) -> Path | None:
    """Locates the public half of a key.

    The `.pub` companion is preferred; otherwise any `.pub` file in `ssh_dir`.
    """
    companion = private_key.with_name(private_key.name + ".pub")
    if companion.exists():
        return companion
    candidates = sorted(ssh_dir.glob("*.pub"))
    if candidates:
        return candidates[0]
    logger.warning(f"No public key found in {ssh_dir}.")
    return None


def _token_from_name(name: str, algorithm: str, label: str, owner: str) -> str:
    prefix = f"{algorithm}_{label}_{owner}_"
    return name[len(prefix) :] if name.startswith(prefix) else ""


def _pick_active(existing: list[Path], prefix: str) -> Path:
    for path in existing:
        if path.name.startswith(prefix):
            return path
    return existing[0]


def remove_keys(keys: list[Path]) -> None:
    """Deletes private keys and their public companions."""
    for key in keys:
        logger.info(f"Removing key {key.name}")
        key.unlink(missing_ok=True)
        key.with_name(key.name + ".pub").unlink(missing_ok=True)


def generate_key(path: Path, algorithm: str, user: str | None = None) -> None:
    """Runs ssh-keygen with an empty passphrase, commented with the key name.

    Raises:
        ProvisioningError: If ssh-keygen fails.
    """
    cmd = [
        "ssh-keygen",
        "-q",
        "-t",
        algorithm,
        "-C",
        path.name,
        "-f",
        str(path),
        "-N",
        "",
    ]
    try:
        subprocess.run(as_user(cmd, user), check=True, capture_output=True, text=True)
    except (OSError, subprocess.CalledProcessError) as e:
        detail = getattr(e, "stderr", "") or e
        raise ProvisioningError(f"ssh-keygen failed: {detail}") from e


def adopt_key(source: Path, path: Path, user: str | None = None) -> None:
    """Copies an operator-supplied private key (and its `.pub`, if any) into place."""
    shutil.copyfile(source, path)
    path.chmod(0o600)
    chown(path, user)

    source_pub = source.with_name(source.name + ".pub")
    if source_pub.exists():
        pub = path.with_name(path.name + ".pub")
        shutil.copyfile(source_pub, pub)
        pub.chmod(0o644)
        chown(pub, user)


def ensure_key(
    owner: str,
    ssh_dir: Path,
    algorithm: str = "ed25519",
    label: str = APP_NAME,
    choose: Callable[[list[Path]], KeyDecision] | None = None,
    existing_key: Path | None = None,
    user: str | None = None,
) -> KeyMaterial:
    """Ensures exactly one SSH keypair identifies this installation.

    Args:
        owner (str): Owner label encoded into the key name.
        ssh_dir (Path): The `.ssh` directory of the service identity.
        algorithm (str): ssh-keygen key type.
        label (str): Installation label encoded into the key name.
        choose (Callable | None): Asked to keep or replace when keys already
            exist. Defaults to keeping them.
        existing_key (Path | None): Private key to adopt instead of generating.
            A readable key is always adopted as the active key; `choose` then
            only decides whether the other keys are removed.
        user (str | None): Service identity owning the files.

    Returns:
        KeyMaterial: The active key.
    """
    ssh_dir.mkdir(parents=True, exist_ok=True)
    ssh_dir.chmod(0o700)
    chown(ssh_dir, user)

    supplied = None
    if existing_key is not None:
        if existing_key.is_file():
            supplied = existing_key.resolve()
        else:
            logger.warning(f"Key file {existing_key} not found. Ignoring it.")

    existing = find_private_keys(ssh_dir)
    if not existing:
        decision = KeyDecision.GENERATE_NEW
    elif choose is None:
        decision = KeyDecision.KEEP_EXISTING
    else:
        decision = choose(existing)

    prefix = f"{algorithm}_{label}_{owner}_"

    if decision is KeyDecision.KEEP_EXISTING and supplied is None:
        active = _pick_active(existing, prefix)
        logger.info(f"Keeping existing key {active.name}")
        return KeyMaterial(
            owner=owner,
            identifier=_token_from_name(active.name, algorithm, label, owner),
            private_key=active,
            public_key=find_public_key(active, ssh_dir),
        )

    if decision is KeyDecision.REPLACE_EXISTING:
        # The supplied key may itself live in ssh_dir; it goes after adoption.
        remove_keys([k for k in existing if k.resolve() != supplied])

    token = uuid.uuid4().hex
    path = ssh_dir / key_name(algorithm, label, owner, token)

    if supplied is not None:
        logger.info(f"Adopting private key {existing_key} as {path.name}")
        adopt_key(supplied, path, user)
        in_ssh_dir = any(k.resolve() == supplied for k in existing)
        if decision is KeyDecision.REPLACE_EXISTING and in_ssh_dir:
            remove_keys([supplied])
    else:
        logger.info(f"Generating {algorithm} key {path.name}")
        generate_key(path, algorithm, user)
        path.chmod(0o600)
        pub = path.with_name(path.name + ".pub")
        if pub.exists():
            pub.chmod(0o644)

    return KeyMaterial(
        owner=owner,
        identifier=token,
        private_key=path,
        public_key=find_public_key(path, ssh_dir),
    )


def register_known_host(
    ssh_dir: Path, host: str, key_types: str = "rsa", user: str | None = None
) -> bool:
    """Appends the host's public signatures to known_hosts, skipping duplicates.

    Args:
        ssh_dir (Path): The `.ssh` directory.
        host (str): Remote hostname.
        key_types (str): Comma-separated ssh-keyscan key types.
        user (str | None): Service identity owning known_hosts.

    Returns:
        bool: False if the host could not be scanned, True otherwise.
    """
    try:
        res = subprocess.run(
            ["ssh-keyscan", "-t", key_types, host],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"ssh-keyscan {host} failed: {e}")
        return False

    scanned = [
        line.strip()
        for line in res.stdout.splitlines()
        if line.strip() and not line.startswith("#")
    ]
    if not scanned:
        logger.warning(f"ssh-keyscan returned no keys for {host}.")
        return False

    known_hosts = ssh_dir / "known_hosts"
    present: set[str] = set()
    if known_hosts.exists():
        present = {line.strip() for line in known_hosts.read_text().splitlines()}

    missing = [line for line in scanned if line not in present]
    if missing:
        with open(known_hosts, "a") as f:
            f.write("\n".join(missing) + "\n")
        logger.info(f"Added {len(missing)} host key(s) for {host} to known_hosts.")

    known_hosts.chmod(0o644)
    chown(known_hosts, user)
    return True
