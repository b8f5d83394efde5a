import logging
import os
import subprocess
from pathlib import Path

from .constants import APP_NAME, GH_BIN, GIT_BIN, NON_INTERACTIVE_ENV
from .errors import CommandError

logger = logging.getLogger(APP_NAME)


def run_command(
    argv: list[str], cwd: Path | None = None, env: dict | None = None
) -> str:
    """Executes a command and returns its stripped stdout.

    Prompts are disabled so an unattended backup can never hang waiting for
    credentials.

    Args:
        argv (list[str]): The full command line.
        cwd (Path | None, optional): Working directory. Defaults to None.
        env (dict | None, optional): Extra environment variables layered over
                                     the current environment. Defaults to None.

    Returns:
        str: The stripped stdout of the command.

    Raises:
        CommandError: If the command returns a non-zero exit code.
        OSError: If the executable cannot be started.
    """
    full_env = os.environ.copy()
    full_env.update(NON_INTERACTIVE_ENV)
    if env:
        full_env.update(env)

    logger.debug(f"RUN {' '.join(argv)}")
    try:
        res = subprocess.run(
            argv,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            env=full_env,
        )
    except subprocess.CalledProcessError as e:
        raise CommandError(argv, e.returncode, e.stderr or "") from e
    return (res.stdout or "").strip()


class GhCli:
    """A thin wrapper around the GitHub CLI (`gh`).

    Every method shells out to `gh`; nothing here talks to the GitHub API
    directly.

    Attributes:
        binary (str): The executable name or path of the GitHub CLI.
    """

    def __init__(self, binary: str = GH_BIN):
        self.binary = binary

    def _run(self, args: list[str], cwd: Path | None = None) -> str:
        return run_command([self.binary, *args], cwd=cwd)

    def auth_status(self) -> None:
        """Runs `gh auth status`.

        Raises:
            CommandError: If gh reports that no account is authenticated.
            OSError: If gh is not installed.
        """
        self._run(["auth", "status"])

    def api(self, endpoint: str, jq: str, paginate: bool = False) -> str:
        """Calls `gh api` with a jq filter and returns the raw output."""
        cmd = ["api", endpoint]
        if paginate:
            cmd.append("--paginate")
        cmd.extend(["--jq", jq])
        return self._run(cmd)

    def repo_list(self, owner: str, limit: int, fields: list[str]) -> str:
        """Returns the raw JSON of `gh repo list` for one owner."""
        return self._run(
            [
                "repo",
                "list",
                owner,
                "--limit",
                str(limit),
                "--json",
                ",".join(fields),
            ]
        )

    def repo_clone(self, canonical_id: str, target: Path, mirror: bool) -> None:
        """Clones a repository with `gh repo clone`, passing git flags after `--`.

        Args:
            canonical_id (str): The `owner/name` to clone.
            target (Path): The directory to clone into (must not exist).
            mirror (bool): Whether to create a bare mirror clone.
        """
        cmd = ["repo", "clone", canonical_id, str(target)]
        if mirror:
            cmd.extend(["--", "--mirror"])
        self._run(cmd)


class GitRepo:
    """A wrapper around the Git command-line interface for a local backup copy.

    Handles both bare mirrors (created with `--mirror`) and regular clones.

    Attributes:
        path (Path): The file system path to the repository.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository directory.

        Raises:
            ValueError: If the path holds neither a work tree nor a bare repository.
        """
        self.path = path
        if not self.is_repository(path):
            raise ValueError(f"Not a git repository: {self.path}")

    @staticmethod
    def is_repository(path: Path) -> bool:
        """Checks for a `.git` directory or the layout of a bare repository."""
        if (path / ".git").exists():
            return True
        return (path / "HEAD").is_file() and (path / "objects").is_dir()

    @property
    def is_bare(self) -> bool:
        return not (self.path / ".git").exists()

    def _run(self, args: list[str]) -> str:
        return run_command([GIT_BIN, "-C", str(self.path), *args])

    def ref_snapshot(self) -> dict[str, str]:
        """Maps every ref name to the object it points at.

        Returns:
            dict[str, str]: ref name -> object id.
        """
        output = self._run(["for-each-ref", "--format=%(objectname) %(refname)"])
        refs = {}
        for line in output.splitlines():
            oid, _, ref = line.partition(" ")
            if ref:
                refs[ref] = oid
        return refs

    def remote_update(self) -> None:
        """Refreshes a mirror from its remote, dropping refs deleted upstream."""
        self._run(["remote", "update", "--prune"])

    def fetch_all(self) -> None:
        """Fetches every remote of a regular clone, pruning stale branches."""
        self._run(["fetch", "--all", "--prune"])
