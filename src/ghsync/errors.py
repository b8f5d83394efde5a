"""Exception hierarchy for ghsync.

Per-repository failures (`BackupError` and subclasses) are recovered inside the
executor and recorded as failed results. `DiscoveryError` aborts the whole run
because no further jobs can be produced.
"""


class GhsyncError(Exception):
    """Base class for all ghsync errors."""


class CommandError(GhsyncError):
    """A `gh` or `git` subprocess exited with a non-zero status.

    Attributes:
        argv (list[str]): The command that was executed.
        returncode (int): The process exit status.
        stderr (str): The captured standard error, stripped.
    """

    def __init__(self, argv: list[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        detail = f"\n{self.stderr}" if self.stderr else ""
        super().__init__(f"command failed ({returncode}): {' '.join(argv)}{detail}")


class DiscoveryError(GhsyncError):
    """Listing repositories or organizations failed."""


class MalformedOutputError(DiscoveryError):
    """The GitHub CLI returned output that does not match the expected schema."""


class BackupError(GhsyncError):
    """A backup of a single repository failed.

    Attributes:
        canonical_id (str): The `owner/name` of the affected repository.
    """

    def __init__(self, canonical_id: str, message: str):
        self.canonical_id = canonical_id
        super().__init__(message)


class TransientBackupError(BackupError):
    """A retryable failure (network, rate limit, server error)."""


class PermanentBackupError(BackupError):
    """A non-retryable failure (authentication, not found, bad target)."""
