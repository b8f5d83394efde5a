import threading

from rich.console import Console

from ghsync.aggregator import Aggregator
from ghsync.models import Action, BackupResult, Outcome


def result(nwo: str, action: Action, error: str | None = None) -> BackupResult:
    outcome = {
        Action.CLONED: Outcome.SUCCESS,
        Action.UPDATED: Outcome.SUCCESS,
        Action.UNCHANGED: Outcome.SKIPPED,
        Action.CANCELLED: Outcome.SKIPPED,
        Action.FAILED: Outcome.FAILED,
    }[action]
    return BackupResult(nwo, outcome, action, error_detail=error, attempts=1)


def quiet_console() -> Console:
    return Console(record=True, width=120, force_terminal=False)


def test_counts_and_exit_code_without_failures() -> None:
    agg = Aggregator(quiet_console())
    agg.record(result("a/one", Action.CLONED))
    agg.record(result("a/two", Action.UPDATED))
    agg.record(result("a/three", Action.UNCHANGED))

    summary = agg.summary()

    assert summary.total == 3
    assert summary.outcomes[Outcome.SUCCESS] == 2
    assert summary.outcomes[Outcome.SKIPPED] == 1
    assert summary.failed == []
    assert summary.exit_code == 0


def test_any_failure_gives_non_zero_exit() -> None:
    agg = Aggregator(quiet_console())
    agg.record(result("a/one", Action.CLONED))
    agg.record(result("a/two", Action.FAILED, "HTTP 404"))

    assert agg.exit_code == 1


def test_interrupted_run_exit_code() -> None:
    agg = Aggregator(quiet_console())
    agg.record(result("a/one", Action.CANCELLED))
    agg.mark_interrupted()

    assert agg.exit_code == 130


def test_progress_and_summary_output() -> None:
    console = quiet_console()
    agg = Aggregator(console, total=2)
    agg.record(result("a/one", Action.CLONED))
    agg.record(result("b/two", Action.FAILED, "fatal: [rejected]\nmore detail"))

    agg.render_summary()
    out = console.export_text()

    assert "[1/2] [+] a/one" in out
    assert "[2/2] [!] b/two" in out
    assert "fatal: [rejected]" in out
    assert "more detail" not in out
    assert "Cloned:    1" in out
    assert "Failed:    1" in out
    assert "- b/two (fatal: [rejected])" in out


def test_concurrent_records_are_all_counted() -> None:
    """Verifies that counters stay exact under concurrent writers."""
    agg = Aggregator(quiet_console())

    def writer(prefix: str) -> None:
        for i in range(50):
            agg.record(result(f"{prefix}/r{i}", Action.UNCHANGED))

    threads = [threading.Thread(target=writer, args=(f"o{n}",)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert agg.summary().total == 400
    assert len({r.canonical_id for r in agg.results}) == 400
