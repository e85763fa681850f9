import os
from pathlib import Path

"""Global constants and default values for allwaysup.

This module defines the application identifiers, the fixed filesystem layout
under the service identity's home, remote naming conventions and the default
mirror exclusion policy used across the application.
"""

# --- Identity ---
APP_NAME = "allwaysup"
"""str: The human-readable application name, also the default service account."""

DEFAULT_SHELL = "/bin/bash"
"""str: Login shell assigned to a freshly created service account."""

# --- Configuration Paths ---
CONFIG_FILE = Path(os.environ.get("ALLWAYSUP_CONFIG", "/etc/allwaysup/config.toml"))
"""Path: The main configuration file path."""

# --- Home Layout ---
INSTALL_DIR = "install"
BACKUP_DIR = "services/backup"
TOOLS_DIR = "wifi_tools"
GITREPO_DIR = "gitrepo"
LOG_DIR = "logs"
SSH_DIR = ".ssh"

HOME_SKELETON = [INSTALL_DIR, BACKUP_DIR, TOOLS_DIR, GITREPO_DIR, LOG_DIR]
"""list[str]: Directories created under the home path on every provisioning run."""

# --- Git ---
DEFAULT_REPO_URL = "https://github.com/CMO-GAMING/allwaysup"
"""str: Repository URL offered to the operator when none is configured."""

REMOTE_HOST = "github.com"
"""str: The external host whose HTTPS URLs are rewritten to SSH form."""

ORIGIN_REMOTE = "origin"
LOCAL_MIRROR_REMOTE = "localpush"
BARE_UPSTREAM_REMOTE = "upstream"

README_NAME = "README.md"
INITIAL_COMMIT_MESSAGE = "initial commit"

# --- Logs ---
LOG_RETENTION = 25
"""int: Number of compressed log archives kept per job."""

LOG_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
"""str: strftime format of the bracketed prefix on every job log line."""

SYNC_LOG_NAME = "sync_to_repo.log"
COMMIT_LOG_NAME = "commit_push.log"
LOCK_FILE_NAME = ".allwaysup.lock"

# --- Keys ---
PRIVATE_KEY_PATTERNS = [
    "*.pem",
    "*.key",
    "id_*",
    "ed25519_*",
    "rsa_*",
    "ecdsa_*",
    "dsa_*",
]
"""list[str]: Glob patterns identifying private key (or certificate) files."""

NON_KEY_FILES = ["known_hosts", "known_hosts.old", "config", "authorized_keys"]

# --- Schedule ---
DEFAULT_SCHEDULE = "0 * * * *"
"""str: Cron expression for the recurring sync + commit run (hourly)."""

# --- Mirror ---
DEFAULT_EXCLUDES = [
    # Version control metadata and the bare mirror itself
    ".git/",
    ".github/",
    ".gitignore",
    "*.git/",
    "gitrepo/",
    # Credentials, secrets and tokens
    ".env",
    ".ssh/",
    ".gnupg/",
    "*.token*",
    "*.secret*",
    ".awstats-htpasswd",
    # Caches and virtual environments
    ".mypy_cache/",
    "__pycache__/",
    ".cache/",
    ".config/",
    ".local/",
    ".npm/",
    ".pm2/",
    ".venv/",
    "venv/",
    "node_modules/",
    "snap/",
    # Logs
    "*.log",
    "logs/",
    "sync_logs/",
    "guild_member_logs/",
    "cron.log",
    "hourly_sync.log",
    # Databases
    "*.sqlite*",
    "guild_settings.db*",
    "thegoatbot.db*",
    "about_the_database.txt",
    "db_helper.py*",
    "data/",
    # Large or binary dumps and backups
    "*.bak",
    "*.py_backup_*",
    "berconpy-client.tar.gz",
    "backups_src/",
    "allwaysup_BACKUPS/",
    "virtualmin-backup/",
    "custom_packages/",
    "assets/",
    "package-lock.json",
    # Editor and remote-session state
    ".vscode-remote-containers/",
    ".vscode-server/",
    ".workspace_context.json",
    ".bash_history",
    ".bash_logout",
    ".bashrc",
    ".profile",
    ".python_history",
    ".selected_editor",
    ".sudo_as_admin_successful",
    ".wget-hsts",
    ".lesshst",
    # Noisy or sensitive directories
    "tmp/",
    ".tmp/",
    "public_html/",
    "homes/",
    "cgi-bin/",
    ".filemin/",
    ".spamassassin/",
    "awstats/",
    "bin/",
    "etc/",
    "Maildir/",
    "trash/",
    ".trash/",
    ".Trash/",
    "ecosystem.config.js",
    "lint_report.txt",
    "mypy_report.txt",
    "thegoatbot.log",
    "allwaysup/",
]
"""list[str]: rsync patterns never mirrored from the working tree."""
