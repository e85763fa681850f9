import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from . import bootstrap, commit, joblog, keys, mirror, repo, service, system
from .config import Config
from .constants import APP_NAME, COMMIT_LOG_NAME, SYNC_LOG_NAME
from .errors import AllwaysupError
from .repo import RepositoryPair

logger = logging.getLogger(APP_NAME)
console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configures the root application logger to write to stderr.

    Args:
        verbose (bool): Log DEBUG messages too.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


# --- Operator Prompts ---


def prompt_repo_url(config: Config) -> str:
    return Prompt.ask("Repo URL", default=config.repo.default_url).strip()


def prompt_key_path() -> Path | None:
    console.print(
        "\nOptional: provide path to existing SSH private key "
        "[dim](ENTER to auto-generate)[/dim]"
    )
    answer = Prompt.ask(">", default="", show_default=False).strip()
    return Path(answer).expanduser() if answer else None


def prompt_key_decision(existing: list[Path]) -> keys.KeyDecision:
    console.print("[bold yellow]WARNING:[/bold yellow] Existing SSH key(s) found:")
    for key in existing:
        console.print(f"   • {key.name}")
    choice = Prompt.ask(
        "   [K]eep / [R]eplace (deletes the files above)",
        choices=["k", "r"],
        default="k",
    )
    if choice == "r":
        return keys.KeyDecision.REPLACE_EXISTING
    return keys.KeyDecision.KEEP_EXISTING


def prompt_pull() -> bool:
    console.print("\nThe local mirror has no history yet.")
    return Confirm.ask("   Pull from the remote now?", default=False)


def show_public_key(material: keys.KeyMaterial) -> None:
    text = material.public_text()
    if text is None:
        console.print(
            "[bold yellow]WARNING:[/bold yellow] No public key found. "
            "Register a deploy key manually."
        )
        return
    console.print(
        Panel(
            text,
            title="PUBLIC KEY (ADD TO GITHUB AS A DEPLOY KEY)",
            border_style="cyan",
            expand=False,
        )
    )


# --- Flows ---


def activate(
    config: Config, pair: RepositoryPair, user: str, config_path: Path | None
) -> bool:
    """Runs the bootstrap gate and, if it allows it, registers the schedule.

    Returns:
        bool: True if the recurring jobs are scheduled.
    """
    if not bootstrap.maybe_bootstrap(pair, prompt_pull):
        console.print(
            "[bold yellow]SKIPPED:[/bold yellow] Recurring jobs not scheduled. "
            "Run [bold cyan]allwaysup activate[/bold cyan] when ready."
        )
        return False

    entry = service.build_entry(config, service.get_executable(config), config_path)
    if service.ensure_scheduled(entry, user):
        console.print(f"[bold green]SUCCESS:[/bold green] Scheduled: {entry.line}")
    else:
        console.print("Schedule entry already present.", style="dim")
    return True


def run_install(config: Config, config_path: Path | None = None) -> None:
    """Provisions identity, key and repositories, then activates the jobs.

    Args:
        config (Config): The configuration record.
        config_path (Path | None): Configuration file passed on to the jobs.
    """
    system.require_root()

    identity = system.ensure_identity(config)
    config = config.with_home(identity.home)
    user = identity.name
    console.print(f"[bold blue]USER:[/bold blue] {user} ({identity.home})")

    url = prompt_repo_url(config)
    owner = keys.owner_from_url(url, config.repo.host)
    existing_key = prompt_key_path()

    material = keys.ensure_key(
        owner,
        config.ssh_dir,
        algorithm=config.keys.algorithm,
        label=config.keys.label,
        choose=prompt_key_decision,
        existing_key=existing_key,
        user=user,
    )
    keys.register_known_host(
        config.ssh_dir, config.repo.host, config.keys.host_key_types, user
    )
    show_public_key(material)

    pair = repo.ensure_pair(
        config.work_dir,
        config.bare_dir,
        url,
        author_name=config.repo.author_name,
        author_email=config.repo.author_email,
        host=config.repo.host,
        ignore=config.mirror.exclude,
        identity_file=material.private_key,
        user=user,
    )
    console.print(f"[bold blue]REPO:[/bold blue] {pair.work.path} -> {pair.bare.path}")

    activate(config, pair, user, config_path)
    logger.info("installer complete")


def run_activate(config: Config, config_path: Path | None = None) -> None:
    system.require_root()
    config = system.resolve_home(config)
    user = config.identity.user
    pair = repo.open_pair(config.work_dir, config.bare_dir, user)
    activate(config, pair, user, config_path)


def show_status(config: Config) -> None:
    """Displays the provisioning state without changing anything."""
    table = Table(title=f"{APP_NAME} status", show_header=False)
    table.add_column("Item", style="bold")
    table.add_column("State")

    home = system.lookup_home(config.identity.user)
    table.add_row(
        "User", f"{config.identity.user} ({home})" if home else "[red]missing[/red]"
    )

    found = keys.find_private_keys(config.ssh_dir)
    table.add_row("SSH keys", ", ".join(k.name for k in found) or "[red]none[/red]")

    try:
        user = config.identity.user if system.is_root() else None
        pair = repo.open_pair(config.work_dir, config.bare_dir, user)
        table.add_row(
            "Working repo", f"{pair.work.path} ({pair.work.commit_count()} commits)"
        )
        table.add_row(
            "Bare mirror", f"{pair.bare.path} ({pair.bare.commit_count()} commits)"
        )
        table.add_row("Origin", pair.remote_url or "[red]unset[/red]")
        ssh_cmd = pair.work.get_config("core.sshCommand")
        table.add_row("SSH identity", ssh_cmd or "[yellow]default[/yellow]")
    except (AllwaysupError, RuntimeError) as e:
        table.add_row("Repositories", f"[red]{e}[/red]")

    try:
        entry = service.build_entry(config, service.get_executable(config))
        scheduled = service.is_scheduled(entry, config.identity.user)
        state = "[green]active[/green]" if scheduled else "[yellow]inactive[/yellow]"
        table.add_row("Schedule", state)
    except AllwaysupError as e:
        table.add_row("Schedule", f"[red]{e}[/red]")

    for name in (SYNC_LOG_NAME, COMMIT_LOG_NAME):
        archives = joblog.list_archives(config.log_dir / name)
        table.add_row(f"Logs ({name})", f"{len(archives)} archived")

    console.print(table)


def main() -> None:
    """Main entry point for the allwaysup CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Provision a service account with a mirrored git backup.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the TOML configuration file",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser(
        "install", help="Provision user, key and repositories (default)"
    )
    subparsers.add_parser("activate", help="Pull if needed and schedule recurring jobs")
    subparsers.add_parser("sync", help="Mirror the working tree once")
    subparsers.add_parser("commit", help="Commit and push working-tree changes once")
    subparsers.add_parser("status", help="Show provisioning state")

    args = parser.parse_args()
    setup_logging(args.verbose)
    config = Config.load(args.config)

    try:
        if args.command in ("sync", "commit"):
            config = system.resolve_home(config)
            system.require_service_identity(config)
            job = mirror if args.command == "sync" else commit
            sys.exit(job.run(config))
        elif args.command == "status":
            show_status(system.resolve_home(config))
            return
        elif args.command == "activate":
            run_activate(config, args.config)
            return

        # Default Action (if no subcommand is run)
        run_install(config, args.config)
    except AllwaysupError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
