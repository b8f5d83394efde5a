"""Shared fixtures: an in-memory stand-in for the gh and git executables."""

import json
import threading
import time
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from ghsync.errors import CommandError


def repo_json(
    nwo: str,
    is_fork: bool = False,
    is_archived: bool = False,
    visibility: str = "PRIVATE",
    branch: str | None = "main",
) -> dict[str, Any]:
    """Builds one element of `gh repo list --json` output."""
    return {
        "nameWithOwner": nwo,
        "url": f"https://github.com/{nwo}",
        "isFork": is_fork,
        "isArchived": is_archived,
        "visibility": visibility,
        "defaultBranchRef": {"name": branch} if branch is not None else None,
    }


class FakeGitHub:
    """Answers `run_command` calls the way gh and git would.

    Attributes:
        username (str): Login returned by `gh api /user`.
        owners (dict): owner -> list of repo_json dicts.
        remote_refs (dict): canonical id -> {ref: oid} on the "server".
        failures (dict): canonical id -> list of exceptions raised by
            successive clone/update attempts (popped in order).
        calls (list): Every argv seen.
        max_active (int): Highest number of concurrent clone/update calls.
    """

    def __init__(self, username: str = "octo", owners: dict | None = None):
        self.username = username
        self.owners: dict[str, list[dict]] = owners or {}
        self.remote_refs: dict[str, dict[str, str]] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.list_failures: dict[str, Exception] = {}
        self.calls: list[list[str]] = []
        self.delay = 0.0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    @property
    def orgs(self) -> list[str]:
        return [o for o in self.owners if o != self.username]

    def refs_for(self, nwo: str) -> dict[str, str]:
        return self.remote_refs.setdefault(nwo, {"refs/heads/main": "a" * 40})

    def __call__(
        self, argv: list[str], cwd: Path | None = None, env: dict | None = None
    ) -> str:
        with self._lock:
            self.calls.append(list(argv))
        if argv[0] == "gh":
            return self._gh(argv[1:])
        return self._git(Path(argv[2]), argv[3:])

    def _gh(self, args: list[str]) -> str:
        if args[:2] == ["auth", "status"]:
            return ""
        if args[:2] == ["api", "/user"]:
            return self.username
        if args[:2] == ["api", "/user/orgs"]:
            return "\n".join(self.orgs)
        if args[:2] == ["repo", "list"]:
            owner = args[2]
            if owner in self.list_failures:
                raise self.list_failures[owner]
            return json.dumps(self.owners.get(owner, []))
        if args[:2] == ["repo", "clone"]:
            nwo, staging = args[2], Path(args[3])
            with self._track():
                self._maybe_fail(nwo)
                staging.mkdir(parents=True)
                (staging / "HEAD").write_text("ref: refs/heads/main\n")
                (staging / "objects").mkdir()
                self._write_refs(staging, self.refs_for(nwo))
            return ""
        raise AssertionError(f"unexpected gh call: {args}")

    def _git(self, path: Path, args: list[str]) -> str:
        nwo = f"{path.parent.name}/{path.name}"
        if args[0] == "for-each-ref":
            refs = json.loads((path / "fake-refs").read_text())
            return "\n".join(f"{oid} {ref}" for ref, oid in sorted(refs.items()))
        if args[:2] in (["remote", "update"], ["fetch", "--all"]):
            with self._track():
                self._maybe_fail(nwo)
                self._write_refs(path, self.refs_for(nwo))
            return ""
        raise AssertionError(f"unexpected git call: {args}")

    def _maybe_fail(self, nwo: str) -> None:
        pending = self.failures.get(nwo)
        if pending:
            raise pending.pop(0)

    @staticmethod
    def _write_refs(path: Path, refs: dict[str, str]) -> None:
        (path / "fake-refs").write_text(json.dumps(refs))

    def _track(self) -> "_Active":
        return _Active(self)


class _Active:
    def __init__(self, fake: FakeGitHub):
        self.fake = fake

    def __enter__(self) -> None:
        with self.fake._lock:
            self.fake.active += 1
            self.fake.max_active = max(self.fake.max_active, self.fake.active)
        if self.fake.delay:
            time.sleep(self.fake.delay)

    def __exit__(self, *exc: object) -> None:
        with self.fake._lock:
            self.fake.active -= 1


def auth_error(nwo: str) -> CommandError:
    return CommandError(
        ["gh", "repo", "clone", nwo],
        1,
        "GraphQL: Could not resolve to a Repository with the name '" + nwo + "'.",
    )


def network_error(nwo: str) -> CommandError:
    return CommandError(
        ["gh", "repo", "clone", nwo],
        128,
        "fatal: unable to access 'https://github.com/': Could not resolve host: "
        "github.com",
    )


@pytest.fixture
def fake_github(mocker: MagicMock) -> FakeGitHub:
    """Installs a FakeGitHub behind every gh/git subprocess call."""
    fake = FakeGitHub(
        owners={
            "octo": [
                repo_json("octo/dotfiles"),
                repo_json("octo/blog", visibility="PUBLIC"),
                repo_json("octo/fork-of-x", is_fork=True, visibility="PUBLIC"),
            ],
            "acme": [
                repo_json("acme/api"),
                repo_json("acme/legacy", is_archived=True, branch=None),
            ],
        }
    )
    mocker.patch("ghsync.git_wrapper.run_command", side_effect=fake)
    return fake
