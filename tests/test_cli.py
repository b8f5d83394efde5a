"""Tests for the Command Line Interface (CLI) module."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ghsync import cli
from ghsync.config import Config
from ghsync.errors import DiscoveryError

from .conftest import FakeGitHub, auth_error


@pytest.fixture(autouse=True)
def isolated_cli(mocker: MagicMock) -> Config:
    """Keeps CLI tests away from the user's config file and log directory."""
    conf = Config()
    conf.retry.base_delay = 0
    conf.retry.max_delay = 0
    mocker.patch("ghsync.cli.Config.load", return_value=conf)
    mocker.patch("ghsync.cli.setup_logging")
    return conf


def run_main(mocker: MagicMock, *argv: str) -> int:
    mocker.patch("sys.argv", ["ghsync", *argv])
    with pytest.raises(SystemExit) as exc_info:
        cli.main()
    return exc_info.value.code


def test_full_backup_exit_zero(
    fake_github: FakeGitHub,
    tmp_path: Path,
    mocker: MagicMock,
    capsys: pytest.CaptureFixture,
) -> None:
    code = run_main(mocker, "--dest", str(tmp_path), "--jobs", "2")

    out = capsys.readouterr().out
    assert code == 0
    assert "Authenticated as: octo" in out
    assert "Scanning: octo, acme (2 owner(s))" in out
    assert "Found 5 repo(s)" in out
    assert "Cloned:    5" in out
    assert (tmp_path / "octo" / "dotfiles").exists()


def test_failed_repo_gives_non_zero_exit(
    fake_github: FakeGitHub,
    tmp_path: Path,
    mocker: MagicMock,
    capsys: pytest.CaptureFixture,
) -> None:
    fake_github.failures["octo/blog"] = [auth_error("octo/blog")]

    code = run_main(mocker, "--dest", str(tmp_path))

    out = capsys.readouterr().out
    assert code == 1
    assert "Failed repos:" in out
    assert "- octo/blog" in out


def test_dry_run_does_not_clone(
    fake_github: FakeGitHub,
    tmp_path: Path,
    mocker: MagicMock,
    capsys: pytest.CaptureFixture,
) -> None:
    dest = tmp_path / "backup"

    code = run_main(mocker, "--dry-run", "--no-forks", "--dest", str(dest))

    out = capsys.readouterr().out
    assert code == 0
    assert "Total: 4 repos" in out
    assert "fork-of-x" not in out
    assert not dest.exists()
    assert not any(c[1:3] == ["repo", "clone"] for c in fake_github.calls)


def test_personal_only_scope(
    fake_github: FakeGitHub, tmp_path: Path, mocker: MagicMock
) -> None:
    code = run_main(mocker, "--personal-only", "--dest", str(tmp_path))

    assert code == 0
    assert (tmp_path / "octo").exists()
    assert not (tmp_path / "acme").exists()


def test_config_excludes_merge_with_flags(
    fake_github: FakeGitHub,
    tmp_path: Path,
    mocker: MagicMock,
    isolated_cli: Config,
    capsys: pytest.CaptureFixture,
) -> None:
    isolated_cli.filters.exclude = ["blog"]

    code = run_main(mocker, "--dry-run", "--exclude", "legacy")

    out = capsys.readouterr().out
    assert code == 0
    assert "octo/blog" not in out
    assert "acme/legacy" not in out
    assert "Total: 3 repos" in out


def test_no_match_stops_before_backup(
    fake_github: FakeGitHub,
    tmp_path: Path,
    mocker: MagicMock,
    capsys: pytest.CaptureFixture,
) -> None:
    dest = tmp_path / "backup"

    code = run_main(mocker, "--match", "nothing-*", "--dest", str(dest))

    out = capsys.readouterr().out
    assert code == 0
    assert "Found 0 repo(s)" in out
    assert "No repos matched." in out
    assert "Backing up to" not in out
    assert not dest.exists()


def test_retries_flag_leaves_loaded_config_alone(
    fake_github: FakeGitHub, tmp_path: Path, mocker: MagicMock, isolated_cli: Config
) -> None:
    run_main(mocker, "--retries", "7", "--dest", str(tmp_path))

    assert isolated_cli.retry.max_attempts == 3


def test_no_mirror_clones_regularly(
    fake_github: FakeGitHub, tmp_path: Path, mocker: MagicMock
) -> None:
    run_main(mocker, "--no-mirror", "--org", "acme", "--dest", str(tmp_path))

    clones = [c for c in fake_github.calls if c[1:3] == ["repo", "clone"]]
    assert len(clones) == 2
    assert all("--mirror" not in c for c in clones)


def test_unknown_org_is_a_discovery_error(
    fake_github: FakeGitHub, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    code = run_main(mocker, "--org", "initech")

    err = capsys.readouterr().err
    assert code == 2
    assert "not a member of org(s): initech" in err


def test_unauthenticated_exits_with_hint(
    mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    mocker.patch(
        "ghsync.pipeline.check_auth",
        side_effect=DiscoveryError("gh CLI is not authenticated.\nRun: gh auth login"),
    )

    code = run_main(mocker)

    assert code == 2
    assert "gh auth login" in capsys.readouterr().err


def test_list_orgs(
    fake_github: FakeGitHub, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    code = run_main(mocker, "--list-orgs")

    assert code == 0
    assert "acme (2 repos)" in capsys.readouterr().out


def test_show_config(mocker: MagicMock, capsys: pytest.CaptureFixture) -> None:
    code = run_main(mocker, "--show-config")

    out = capsys.readouterr().out
    assert code == 0
    assert "max_attempts" in out
    assert "repo_limit" in out


@pytest.mark.parametrize(
    "argv",
    [
        ["--orgs-only", "--personal-only"],
        ["--no-forks", "--forks-only"],
        ["--no-archived", "--archived-only"],
        ["--personal-only", "--org", "acme"],
        ["--visibility", "secret"],
        ["--jobs", "0"],
    ],
)
def test_conflicting_flags_are_rejected(mocker: MagicMock, argv: list[str]) -> None:
    assert run_main(mocker, *argv) == 2


def test_interrupt_exit_code(
    fake_github: FakeGitHub, tmp_path: Path, mocker: MagicMock
) -> None:
    mocker.patch("ghsync.pipeline.run_sync", side_effect=KeyboardInterrupt)

    assert run_main(mocker, "--dest", str(tmp_path)) == 130
