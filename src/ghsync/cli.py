import argparse
import logging
import sys
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import pipeline
from .config import Config
from .constants import (
    APP_NAME,
    EXIT_DISCOVERY,
    EXIT_INTERRUPTED,
    EXIT_OK,
    LOG_FILE,
    VISIBILITIES,
)
from .errors import DiscoveryError
from .git_wrapper import GhCli
from .inventory import Filters

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)

EXAMPLES = """\
examples:
  ghsync --dry-run                          List all repos
  ghsync --dest ~/backup                    Mirror-clone everything
  ghsync --org acme --org acme-labs         Only these orgs
  ghsync --orgs-only --no-forks             All orgs, skip forks
  ghsync --personal-only                    Only personal repos
  ghsync --match "api-*"                    Repos matching glob
  ghsync --exclude "poc-*" --no-archived    Skip POCs and archived
  ghsync --visibility private               Only private repos
  ghsync --list-orgs                        Show orgs and exit
"""


def setup_logging(config: Config, verbose: bool = False) -> None:
    """Configures the logging subsystem.

    Warnings (or everything, when verbose) go to stderr; the full INFO trail
    goes to a rotating log file under the XDG state directory.

    Args:
        config (Config): Supplies the log rotation size.
        verbose (bool, optional): Mirror DEBUG output to stderr.
                                  Defaults to False.
    """
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    try:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=config.limits.max_log_size,
            backupCount=5,
        )
    except OSError as e:
        logger.warning(f"Could not open log file {LOG_FILE}: {e}")
        return
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def show_config_reference(config: Config) -> None:
    """Displays every configuration option with its effective value."""
    table = Table(title="ghsync Configuration", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Value", style="yellow")
    table.add_column("Description")

    table.add_row(
        "backup", "dest", repr(config.backup.dest), "Root of the owner/name tree."
    )
    table.add_row(
        "", "mirror", str(config.backup.mirror).lower(), "Create bare mirror clones."
    )
    table.add_row("", "jobs", str(config.backup.jobs), "Concurrent backup workers.")
    table.add_row(
        "",
        "repo_limit",
        str(config.backup.repo_limit),
        "Max repositories listed per owner.",
    )
    table.add_row(
        "retry",
        "max_attempts",
        str(config.retry.max_attempts),
        "Attempts per repository, including the first.",
    )
    table.add_row(
        "",
        "base_delay",
        f"{config.retry.base_delay}s",
        "Backoff after the first failure (e.g., '2s', '1m'); doubles each retry.",
    )
    table.add_row(
        "", "max_delay", f"{config.retry.max_delay}s", "Upper bound for any backoff."
    )
    table.add_row(
        "filters",
        "exclude",
        repr(config.filters.exclude),
        "Glob patterns of repository names to skip.",
    )
    table.add_row(
        "", "no_forks", str(config.filters.no_forks).lower(), "Skip forks by default."
    )
    table.add_row(
        "",
        "no_archived",
        str(config.filters.no_archived).lower(),
        "Skip archived repositories by default.",
    )
    table.add_row(
        "limits",
        "max_log_size",
        str(config.limits.max_log_size),
        "Log size before rotation (e.g., '5mb').",
    )

    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Back up all GitHub repos (personal + org)",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    scope = parser.add_argument_group("Scope")
    scope.add_argument(
        "--org",
        action="append",
        default=[],
        metavar="NAME",
        help="Back up specific org(s) only (repeatable)",
    )
    owner_scope = scope.add_mutually_exclusive_group()
    owner_scope.add_argument(
        "--orgs-only", action="store_true", help="Back up org repos only, skip personal"
    )
    owner_scope.add_argument(
        "--personal-only",
        action="store_true",
        help="Back up personal repos only, skip orgs",
    )
    scope.add_argument("--list-orgs", action="store_true", help="List orgs and exit")

    filters = parser.add_argument_group("Filters")
    forks = filters.add_mutually_exclusive_group()
    forks.add_argument("--no-forks", action="store_true", help="Exclude forked repos")
    forks.add_argument("--forks-only", action="store_true", help="Only forked repos")
    archived = filters.add_mutually_exclusive_group()
    archived.add_argument(
        "--no-archived", action="store_true", help="Exclude archived repos"
    )
    archived.add_argument(
        "--archived-only", action="store_true", help="Only archived repos"
    )
    filters.add_argument(
        "--visibility", choices=VISIBILITIES, help="Filter by visibility"
    )
    filters.add_argument(
        "--match",
        dest="patterns",
        action="append",
        default=[],
        metavar="GLOB",
        help="Only repos matching glob pattern (repeatable)",
    )
    filters.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="GLOB",
        help="Exclude repos matching glob pattern (repeatable)",
    )

    clone = parser.add_argument_group("Clone Options")
    clone.add_argument("--dest", type=Path, help="Destination directory")
    clone.add_argument(
        "--no-mirror",
        action="store_true",
        help="Use regular clone instead of --mirror",
    )
    clone.add_argument("--jobs", type=int, help="Parallel workers")
    clone.add_argument(
        "--retries", type=int, help="Attempts per repo for transient failures"
    )

    parser.add_argument(
        "--dry-run", action="store_true", help="List repos without cloning"
    )
    parser.add_argument("--config", type=Path, help="Path to an alternate config file")
    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Show the effective configuration and exit",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log debug output to stderr"
    )
    return parser


def _build_options(
    args: argparse.Namespace, config: Config, parser: argparse.ArgumentParser
) -> pipeline.SyncOptions:
    """Merges CLI flags over the loaded configuration."""
    if args.personal_only and args.org:
        parser.error("argument --personal-only: not allowed with argument --org")
    if args.jobs is not None and args.jobs < 1:
        parser.error("argument --jobs: must be at least 1")
    if args.retries is not None and args.retries < 1:
        parser.error("argument --retries: must be at least 1")

    retry = config.retry
    if args.retries is not None:
        retry = replace(retry, max_attempts=args.retries)

    no_forks = args.no_forks or (config.filters.no_forks and not args.forks_only)
    no_archived = args.no_archived or (
        config.filters.no_archived and not args.archived_only
    )

    filters = Filters(
        orgs=args.org,
        orgs_only=args.orgs_only,
        personal_only=args.personal_only,
        no_forks=no_forks,
        forks_only=args.forks_only,
        no_archived=no_archived,
        archived_only=args.archived_only,
        visibility=args.visibility,
        patterns=args.patterns,
        exclude=list(dict.fromkeys([*config.filters.exclude, *args.exclude])),
        repo_limit=config.backup.repo_limit,
    )
    return pipeline.SyncOptions(
        dest=args.dest if args.dest is not None else Path(config.backup.dest),
        jobs=args.jobs if args.jobs is not None else config.backup.jobs,
        mirror=config.backup.mirror and not args.no_mirror,
        retry=retry,
        filters=filters,
    )


def run(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    """Executes the requested action and returns the process exit code."""
    config = Config.load(args.config)
    setup_logging(config, args.verbose)

    if args.show_config:
        show_config_reference(config)
        return EXIT_OK

    options = _build_options(args, config, parser)
    gh = GhCli()

    try:
        account = pipeline.authenticate(gh, console)

        if args.list_orgs:
            pipeline.list_orgs(gh, account, console, options.filters.repo_limit)
            return EXIT_OK

        if args.dry_run:
            pipeline.dry_run(gh, options, account, console)
            return EXIT_OK

        summary = pipeline.run_sync(gh, options, account, console)
    except DiscoveryError as e:
        err_console.print(
            f"[bold red]error:[/bold red] {escape(str(e))}", highlight=False
        )
        return EXIT_DISCOVERY
    except KeyboardInterrupt:
        err_console.print("[yellow]Interrupted.[/yellow]")
        return EXIT_INTERRUPTED

    return summary.exit_code


def main() -> None:
    """Main entry point for the ghsync CLI."""
    parser = build_parser()
    args = parser.parse_args()
    sys.exit(run(args, parser))


if __name__ == "__main__":
    main()
