"""Orchestration of discovery and concurrent backups.

The calling (main) thread runs the lister and feeds the work queue while a
fixed pool of worker threads drains it. Keeping discovery on the main thread
means Ctrl-C lands where it can stop dispatch: the cancel event is set, queued
jobs are recorded as cancelled, and in-flight backups finish or clean up their
staging directories before the run returns.
"""

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from .aggregator import Aggregator, Summary
from .config import RetryConfig
from .constants import APP_NAME, DEFAULT_JOBS
from .errors import DiscoveryError
from .executor import BackupExecutor
from .git_wrapper import GhCli
from .inventory import (
    Filters,
    check_auth,
    count_repos,
    get_orgs,
    get_username,
    iter_repositories,
)
from .models import Action, BackupJob, BackupResult, Outcome
from .work_queue import WorkQueue

logger = logging.getLogger(APP_NAME)


@dataclass
class SyncOptions:
    """Runtime options for a backup run.

    Attributes:
        dest (Path): Root of the backup tree.
        jobs (int): Number of concurrent backup workers.
        mirror (bool): Whether new clones are bare mirrors.
        retry (RetryConfig): Retry policy for transient failures.
        filters (Filters): Scope and repository filters.
        queue_size (int | None): Work queue bound; defaults to twice `jobs`.
    """

    dest: Path = Path(".")
    jobs: int = DEFAULT_JOBS
    mirror: bool = True
    retry: RetryConfig = field(default_factory=RetryConfig)
    filters: Filters = field(default_factory=Filters)
    queue_size: int | None = None


@dataclass
class Account:
    """The authenticated GitHub identity and its organizations."""

    username: str
    orgs: list[str]


def authenticate(gh: GhCli, console: Console) -> Account:
    """Verifies gh authentication and fetches the user and their orgs.

    Raises:
        DiscoveryError: If gh is missing, unauthenticated, or misbehaves.
    """
    check_auth(gh)
    username = get_username(gh)
    console.print(f"Authenticated as: [cyan]{escape(username)}[/cyan]")
    return Account(username=username, orgs=get_orgs(gh))


def list_orgs(gh: GhCli, account: Account, console: Console, limit: int) -> None:
    """Prints every organization with its repository count."""
    console.print(f"\nOrgs ({len(account.orgs)}):")
    for org in sorted(account.orgs, key=str.lower):
        console.print(f"  {escape(org)} ({count_repos(gh, org, limit)} repos)")


def dry_run(
    gh: GhCli, options: SyncOptions, account: Account, console: Console
) -> int:
    """Lists what would be backed up without touching the filesystem.

    Returns:
        int: The number of matched repositories.
    """
    records = list(
        iter_repositories(
            gh, options.filters, account.username, account.orgs, console
        )
    )
    if not records:
        console.print("No repos matched.")
        return 0

    records.sort(key=lambda r: r.key)
    console.print("\n[bold]--- Dry run ---[/bold]")
    total = len(records)
    for i, record in enumerate(records, 1):
        tags = record.tags()
        suffix = f"  ({', '.join(tags)})" if tags else ""
        console.print(
            f"  [{i}/{total}] {escape(record.canonical_id)}[dim]{escape(suffix)}[/dim]",
            highlight=False,
        )
    console.print(f"\nTotal: {total} repos")
    return total


def _worker(
    queue: WorkQueue, executor: BackupExecutor, aggregator: Aggregator
) -> None:
    while (job := queue.get()) is not None:
        try:
            result = executor.run(job)
        except Exception as e:
            logger.exception(f"WORKER ERROR {job.canonical_id}")
            result = BackupResult(
                canonical_id=job.canonical_id,
                outcome=Outcome.FAILED,
                action=Action.FAILED,
                error_detail=f"internal error: {e}",
                attempts=job.attempt_count,
            )
        aggregator.record(result)


def run_sync(
    gh: GhCli,
    options: SyncOptions,
    account: Account,
    console: Console,
    cancel_event: threading.Event | None = None,
) -> Summary:
    """Discovers repositories and backs them up concurrently.

    Args:
        gh (GhCli): The GitHub CLI wrapper.
        options (SyncOptions): Destination, concurrency and filters.
        account (Account): The authenticated user and their orgs.
        console (Console): Where progress and the summary are printed.
        cancel_event (threading.Event | None, optional): Externally controlled
            cancellation signal. Defaults to a private event.

    Returns:
        Summary: The final tallies. Its exit code is non-zero if any
                 repository failed or the run was interrupted. Empty when
                 nothing matched, in which case no backup is started.

    Raises:
        DiscoveryError: After all started backups settle, if listing failed.
    """
    if options.jobs < 1:
        raise ValueError("jobs must be at least 1")

    cancel = cancel_event or threading.Event()
    records = iter_repositories(
        gh, options.filters, account.username, account.orgs, console
    )
    first = next(records, None)
    if first is None:
        console.print("No repos matched.")
        return Summary()

    dest = options.dest.expanduser()
    dest.mkdir(parents=True, exist_ok=True)
    dest = dest.resolve()
    mode = "mirror" if options.mirror else "regular"
    console.print(
        f"\nBacking up to: [cyan]{escape(str(dest))}[/cyan] "
        f"(mode: {mode}, workers: {options.jobs})"
    )
    logger.info(f"START dest={dest} mode={mode} workers={options.jobs}")

    queue = WorkQueue(options.queue_size or 2 * options.jobs)
    aggregator = Aggregator(console)
    executor = BackupExecutor(gh, options.retry, options.mirror, cancel)
    discovery_error: DiscoveryError | None = None

    with ThreadPoolExecutor(
        max_workers=options.jobs, thread_name_prefix="ghsync-worker"
    ) as pool:
        futures = [
            pool.submit(_worker, queue, executor, aggregator)
            for _ in range(options.jobs)
        ]
        try:
            try:
                for record in itertools.chain([first], records):
                    if cancel.is_set():
                        break
                    queue.put(BackupJob.for_record(record, dest))
            except DiscoveryError as e:
                logger.error(f"DISCOVERY ERROR: {e}")
                discovery_error = e
                cancel.set()
            finally:
                queue.close()

            aggregator.total = queue.seen
            for future in futures:
                future.result()
        except KeyboardInterrupt:
            logger.warning("INTERRUPTED: stopping dispatch, waiting for workers.")
            console.print(
                "\n[yellow]Interrupted. Finishing in-flight backups...[/yellow]"
            )
            cancel.set()
            aggregator.mark_interrupted()
            queue.close()

        # Jobs still queued after cancellation are settled here so each one
        # gets exactly one result.
        for job in queue.drain():
            aggregator.record(executor.run(job))

    if cancel.is_set() and discovery_error is None:
        aggregator.mark_interrupted()

    summary = aggregator.render_summary()
    if discovery_error is not None:
        raise discovery_error
    return summary
