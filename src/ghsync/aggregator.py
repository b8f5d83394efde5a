import logging
import threading
from collections import Counter
from dataclasses import dataclass, field

from rich.console import Console
from rich.markup import escape

from .constants import APP_NAME, EXIT_FAILED, EXIT_INTERRUPTED, EXIT_OK
from .models import Action, BackupResult, Outcome

logger = logging.getLogger(APP_NAME)


@dataclass
class Summary:
    """Final tallies of a backup run.

    Attributes:
        outcomes (Counter): Count per Outcome.
        actions (Counter): Count per Action.
        failed (list[BackupResult]): Every failed result, sorted by canonical id.
        interrupted (bool): Whether the run was cancelled by the user.
    """

    outcomes: Counter = field(default_factory=Counter)
    actions: Counter = field(default_factory=Counter)
    failed: list[BackupResult] = field(default_factory=list)
    interrupted: bool = False

    @property
    def total(self) -> int:
        return sum(self.outcomes.values())

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return EXIT_INTERRUPTED
        return EXIT_FAILED if self.failed else EXIT_OK


class Aggregator:
    """Collects backup results from concurrent workers.

    All mutation happens under a single lock; results may arrive in any order.

    Attributes:
        console (Console): Where progress lines are printed.
        total (int | None): Expected number of results, if already known.
    """

    def __init__(self, console: Console | None = None, total: int | None = None):
        self.console = console or Console()
        self.total = total
        self._lock = threading.Lock()
        self._results: list[BackupResult] = []
        self._outcomes: Counter = Counter()
        self._actions: Counter = Counter()
        self._interrupted = False

    def record(self, result: BackupResult) -> int:
        """Stores a result and prints a progress line.

        Args:
            result (BackupResult): A terminal result for one repository.

        Returns:
            int: The running number of recorded results.
        """
        with self._lock:
            self._results.append(result)
            self._outcomes[result.outcome] += 1
            self._actions[result.action] += 1
            count = len(self._results)
            total = self.total
            # Printing under the lock keeps progress lines from interleaving.
            self._print_progress(count, total, result)
        return count

    def mark_interrupted(self) -> None:
        with self._lock:
            self._interrupted = True

    def _print_progress(
        self, count: int, total: int | None, result: BackupResult
    ) -> None:
        position = f"{count}/{total}" if total else str(count)
        style = {
            Outcome.SUCCESS: "green",
            Outcome.SKIPPED: "dim",
            Outcome.FAILED: "red",
        }[result.outcome]
        self.console.print(
            f"  [{position}] [{style}]\\[{result.action.icon}][/{style}] "
            f"{escape(result.canonical_id)}",
            highlight=False,
        )
        if result.failed and result.error_detail:
            first_line = result.error_detail.strip().splitlines()[0]
            self.console.print(
                f"           [dim]{escape(first_line)}[/dim]", highlight=False
            )

    @property
    def results(self) -> list[BackupResult]:
        with self._lock:
            return list(self._results)

    def summary(self) -> Summary:
        with self._lock:
            failed = sorted(
                (r for r in self._results if r.failed),
                key=lambda r: r.canonical_id.lower(),
            )
            return Summary(
                outcomes=Counter(self._outcomes),
                actions=Counter(self._actions),
                failed=failed,
                interrupted=self._interrupted,
            )

    @property
    def exit_code(self) -> int:
        return self.summary().exit_code

    def render_summary(self) -> Summary:
        """Prints the end-of-run summary and returns it."""
        summary = self.summary()
        self.console.print("\n[bold]--- Summary ---[/bold]")
        self.console.print(f"  Cloned:    {summary.actions[Action.CLONED]}")
        self.console.print(f"  Updated:   {summary.actions[Action.UPDATED]}")
        self.console.print(f"  Unchanged: {summary.actions[Action.UNCHANGED]}")
        if summary.actions[Action.CANCELLED]:
            self.console.print(f"  Cancelled: {summary.actions[Action.CANCELLED]}")
        self.console.print(f"  Failed:    {len(summary.failed)}")

        if summary.failed:
            self.console.print("\n[bold red]Failed repos:[/bold red]")
            for r in summary.failed:
                detail = (r.error_detail or "").strip().splitlines()
                reason = f" ({detail[0]})" if detail else ""
                self.console.print(
                    f"  - {escape(r.canonical_id + reason)}", highlight=False
                )

        if summary.interrupted:
            self.console.print(
                "\n[yellow]Interrupted: remaining repos were not backed up.[/yellow]"
            )

        logger.info(
            f"SUMMARY total={summary.total} cloned={summary.actions[Action.CLONED]} "
            f"updated={summary.actions[Action.UPDATED]} "
            f"unchanged={summary.actions[Action.UNCHANGED]} "
            f"failed={len(summary.failed)}"
        )
        return summary
