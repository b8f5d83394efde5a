"""Per-repository backup execution.

A fresh repository is cloned through `gh repo clone` into a staging directory
beside its target and moved into place only once the clone completed, so an
interrupted or failed clone never leaves a half-written repository behind.
Existing copies are refreshed in place with git and compared ref-by-ref to
tell an actual update from a no-op.
"""

import logging
import os
import re
import shutil
import threading
import time
from pathlib import Path

from .config import RetryConfig
from .constants import APP_NAME, STAGING_SUFFIX
from .errors import (
    BackupError,
    CommandError,
    PermanentBackupError,
    TransientBackupError,
)
from .git_wrapper import GhCli, GitRepo
from .models import Action, BackupJob, BackupResult, JobState, Outcome

logger = logging.getLogger(APP_NAME)

# A rate-limited 403 is retryable, so these win over the permanent patterns.
_RATE_LIMIT_PATTERNS = [
    r"rate limit",
    r"secondary rate",
    r"HTTP 429",
]

# Checked after the permanent patterns; repository names quoted in an error
# must not make a missing repository look like a network failure.
_TRANSIENT_PATTERNS = [
    r"HTTP 5\d\d",
    r"returned error: 5\d\d",
    r"could not resolve host",
    r"timed out",
    r"timeout",
    r"connection (reset|refused|closed)",
    r"early EOF",
    r"RPC failed",
    r"remote end hung up",
    r"index-pack failed",
    r"temporary failure",
    r"TLS (recv |send )?error",
    r"TLS handshake",
]

_PERMANENT_PATTERNS = [
    r"authentication (failed|required)",
    r"not authenticated",
    r"gh auth login",
    r"bad credentials",
    r"HTTP 40[134]",
    r"could not resolve to a repository",
    r"repository not found",
    r"not found",
    r"permission denied",
    r"access (blocked|denied)",
    r"DMCA",
    r"already exists and is not an empty directory",
]


def _matches(patterns: list[str], text: str) -> bool:
    return any(re.search(p, text, re.IGNORECASE) for p in patterns)


def classify_failure(canonical_id: str, error: Exception) -> BackupError:
    """Maps a subprocess failure onto the transient/permanent taxonomy.

    Unrecognised command failures are treated as transient; the retry bound
    keeps that from looping.

    Args:
        canonical_id (str): The repository being backed up.
        error (Exception): The failure raised by the git/gh wrapper.

    Returns:
        BackupError: A TransientBackupError or PermanentBackupError.
    """
    if isinstance(error, BackupError):
        return error
    if isinstance(error, CommandError):
        text = error.stderr or str(error)
        if _matches(_RATE_LIMIT_PATTERNS, text):
            return TransientBackupError(canonical_id, text)
        if _matches(_PERMANENT_PATTERNS, text):
            return PermanentBackupError(canonical_id, text)
        if not _matches(_TRANSIENT_PATTERNS, text):
            logger.debug(
                f"Unrecognised failure for {canonical_id}: {_first_line(text)}"
            )
        return TransientBackupError(canonical_id, text)
    if isinstance(error, OSError):
        return PermanentBackupError(canonical_id, f"Could not run command: {error}")
    return PermanentBackupError(canonical_id, str(error))


def staging_path(target: Path) -> Path:
    return target.with_name(target.name + STAGING_SUFFIX)


class BackupExecutor:
    """Backs up one job at a time with bounded retries.

    A single executor instance may be shared by several worker threads; it
    holds no per-job state.

    Attributes:
        gh (GhCli): The GitHub CLI wrapper used for cloning.
        retry (RetryConfig): Attempt bound and backoff policy.
        mirror (bool): Whether new clones are bare mirrors.
        cancel_event (threading.Event): Set to stop starting new attempts.
    """

    def __init__(
        self,
        gh: GhCli,
        retry: RetryConfig,
        mirror: bool = True,
        cancel_event: threading.Event | None = None,
    ):
        self.gh = gh
        self.retry = retry
        self.mirror = mirror
        self.cancel_event = cancel_event or threading.Event()

    def run(self, job: BackupJob) -> BackupResult:
        """Backs up a repository, retrying transient failures with backoff.

        Never raises for per-repository problems; every path ends in exactly
        one BackupResult.

        Args:
            job (BackupJob): The job to execute. Its state and attempt count
                             are updated in place.

        Returns:
            BackupResult: The terminal outcome for the job.
        """
        started = time.monotonic()
        nwo = job.canonical_id
        last_error: BackupError | None = None

        while job.attempt_count < self.retry.max_attempts:
            if self.cancel_event.is_set():
                return self._cancelled(job, started)

            job.attempt_count += 1
            job.state = JobState.RUNNING
            try:
                action = self._attempt(job)
            except Exception as e:
                last_error = classify_failure(nwo, e)
            else:
                job.state = JobState.DONE
                outcome = (
                    Outcome.SKIPPED if action is Action.UNCHANGED else Outcome.SUCCESS
                )
                logger.info(
                    f"{action.value.upper()} {nwo} (attempt {job.attempt_count})"
                )
                return BackupResult(
                    canonical_id=nwo,
                    outcome=outcome,
                    action=action,
                    attempts=job.attempt_count,
                    duration=time.monotonic() - started,
                )

            if isinstance(last_error, PermanentBackupError):
                break
            if job.attempt_count >= self.retry.max_attempts:
                break

            delay = self.retry.delay_for(job.attempt_count)
            job.state = JobState.RETRYING
            logger.warning(
                f"RETRY {nwo}: attempt {job.attempt_count} failed, "
                f"retrying in {delay:.0f}s: {_first_line(str(last_error))}"
            )
            if self.cancel_event.wait(delay):
                return self._cancelled(job, started)

        job.state = JobState.FAILED
        detail = str(last_error) if last_error else "no attempts made"
        logger.error(f"FAILED {nwo} after {job.attempt_count} attempt(s): {detail}")
        return BackupResult(
            canonical_id=nwo,
            outcome=Outcome.FAILED,
            action=Action.FAILED,
            error_detail=detail,
            attempts=job.attempt_count,
            duration=time.monotonic() - started,
        )

    def _cancelled(self, job: BackupJob, started: float) -> BackupResult:
        job.state = JobState.CANCELLED
        shutil.rmtree(staging_path(job.target_path), ignore_errors=True)
        logger.info(f"CANCELLED {job.canonical_id}")
        return BackupResult(
            canonical_id=job.canonical_id,
            outcome=Outcome.SKIPPED,
            action=Action.CANCELLED,
            error_detail="cancelled",
            attempts=job.attempt_count,
            duration=time.monotonic() - started,
        )

    def _attempt(self, job: BackupJob) -> Action:
        target = job.target_path
        if target.exists():
            return self._update(job)
        return self._clone(job)

    def _update(self, job: BackupJob) -> Action:
        """Refreshes an existing copy and reports whether any ref moved."""
        try:
            repo = GitRepo(job.target_path)
        except ValueError as e:
            raise PermanentBackupError(
                job.canonical_id,
                f"{job.target_path} exists but is not a git repository",
            ) from e

        before = repo.ref_snapshot()
        if repo.is_bare:
            repo.remote_update()
        else:
            repo.fetch_all()
        after = repo.ref_snapshot()
        return Action.UPDATED if after != before else Action.UNCHANGED

    def _clone(self, job: BackupJob) -> Action:
        """Clones into a staging directory and atomically moves it into place."""
        target = job.target_path
        staging = staging_path(target)
        if staging.exists():
            logger.debug(f"Removing leftover staging directory {staging}")
            shutil.rmtree(staging)
        target.parent.mkdir(parents=True, exist_ok=True)

        try:
            self.gh.repo_clone(job.canonical_id, staging, self.mirror)
            os.replace(staging, target)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        return Action.CLONED


def _first_line(text: str) -> str:
    return text.strip().splitlines()[0] if text.strip() else ""
