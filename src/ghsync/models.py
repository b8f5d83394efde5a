"""Data types flowing through the discovery and backup pipeline."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class OwnerKind(str, Enum):
    PERSONAL = "personal"
    ORGANIZATION = "organization"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Outcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class Action(str, Enum):
    """What the executor actually did to the local copy."""

    CLONED = "cloned"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def icon(self) -> str:
        return _ICONS[self]


_ICONS = {
    Action.CLONED: "+",
    Action.UPDATED: "~",
    Action.UNCHANGED: "=",
    Action.CANCELLED: "-",
    Action.FAILED: "!",
}


@dataclass(frozen=True)
class RepositoryRecord:
    """A repository discovered through the GitHub CLI.

    Attributes:
        canonical_id (str): The `owner/name` identifier.
        clone_url (str): The repository URL reported by GitHub.
        is_fork (bool): Whether the repository is a fork.
        is_archived (bool): Whether the repository is archived.
        owner_kind (OwnerKind): Personal account or organization.
        default_branch (str): The default branch, empty for empty repositories.
        visibility (str): Lowercased visibility (public, private, internal).
    """

    canonical_id: str
    clone_url: str
    is_fork: bool
    is_archived: bool
    owner_kind: OwnerKind
    default_branch: str = ""
    visibility: str = ""

    @property
    def owner(self) -> str:
        return self.canonical_id.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.canonical_id.split("/", 1)[1]

    @property
    def key(self) -> str:
        """Case-insensitive identity used for deduplication."""
        return self.canonical_id.lower()

    def tags(self) -> list[str]:
        """Short labels shown in dry-run listings."""
        tags = []
        if self.is_fork:
            tags.append("fork")
        if self.is_archived:
            tags.append("archived")
        if self.visibility:
            tags.append(self.visibility)
        return tags


@dataclass
class BackupJob:
    """A unit of work for one repository.

    Only the executor that popped the job from the queue mutates it.
    """

    repository: RepositoryRecord
    target_path: Path
    attempt_count: int = 0
    state: JobState = JobState.PENDING

    @classmethod
    def for_record(cls, record: RepositoryRecord, dest: Path) -> "BackupJob":
        return cls(repository=record, target_path=dest / record.owner / record.name)

    @property
    def canonical_id(self) -> str:
        return self.repository.canonical_id


@dataclass(frozen=True)
class BackupResult:
    canonical_id: str
    outcome: Outcome
    action: Action
    error_detail: str | None = None
    attempts: int = 0
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED
