"""Repository discovery through the GitHub CLI.

The lister resolves which owners to scan (the authenticated user and/or their
organizations), asks `gh repo list` for each owner's repositories, validates
the JSON against a strict schema, applies the user's filters, and yields
deduplicated `RepositoryRecord`s lazily so backups can start before discovery
finishes.
"""

import fnmatch
import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from rich.console import Console
from rich.markup import escape

from .constants import APP_NAME, DEFAULT_REPO_LIMIT, REPO_JSON_FIELDS
from .errors import CommandError, DiscoveryError, MalformedOutputError
from .git_wrapper import GhCli
from .models import OwnerKind, RepositoryRecord

logger = logging.getLogger(APP_NAME)


@dataclass
class Filters:
    """Scope and filter selection for discovery.

    Attributes:
        orgs (list[str]): Restrict scanning to these organizations.
        orgs_only (bool): Scan every organization but not the personal account.
        personal_only (bool): Scan only the personal account.
        no_forks (bool): Drop forks.
        forks_only (bool): Keep only forks.
        no_archived (bool): Drop archived repositories.
        archived_only (bool): Keep only archived repositories.
        visibility (str | None): Keep only this visibility.
        patterns (list[str]): Keep only names matching one of these globs.
        exclude (list[str]): Drop names matching any of these globs.
        repo_limit (int): Max repositories listed per owner.
    """

    orgs: list[str] = field(default_factory=list)
    orgs_only: bool = False
    personal_only: bool = False
    no_forks: bool = False
    forks_only: bool = False
    no_archived: bool = False
    archived_only: bool = False
    visibility: str | None = None
    patterns: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    repo_limit: int = DEFAULT_REPO_LIMIT

    def __post_init__(self) -> None:
        if self.no_forks and self.forks_only:
            raise ValueError("no_forks and forks_only are mutually exclusive")
        if self.no_archived and self.archived_only:
            raise ValueError("no_archived and archived_only are mutually exclusive")
        if self.orgs_only and self.personal_only:
            raise ValueError("orgs_only and personal_only are mutually exclusive")
        if self.personal_only and self.orgs:
            raise ValueError("personal_only cannot be combined with explicit orgs")

    def accepts(self, record: RepositoryRecord) -> bool:
        """Returns True if the record passes every filter."""
        if self.no_forks and record.is_fork:
            return False
        if self.forks_only and not record.is_fork:
            return False
        if self.no_archived and record.is_archived:
            return False
        if self.archived_only and not record.is_archived:
            return False
        if self.visibility and record.visibility != self.visibility.lower():
            return False
        if self.patterns and not any(_glob(p, record.name) for p in self.patterns):
            return False
        if any(_glob(p, record.name) for p in self.exclude):
            return False
        return True


def _glob(pattern: str, text: str) -> bool:
    return fnmatch.fnmatchcase(text.lower(), pattern.lower())


def check_auth(gh: GhCli) -> None:
    """Verifies that the GitHub CLI is installed and authenticated.

    Raises:
        DiscoveryError: With an actionable hint for the user.
    """
    try:
        gh.auth_status()
    except OSError as e:
        raise DiscoveryError(
            "gh CLI is not installed.\nInstall: https://cli.github.com/"
        ) from e
    except CommandError as e:
        raise DiscoveryError("gh CLI is not authenticated.\nRun: gh auth login") from e


def get_username(gh: GhCli) -> str:
    try:
        username = gh.api("/user", ".login")
    except (CommandError, OSError) as e:
        raise DiscoveryError(f"Could not determine the authenticated user: {e}") from e
    if not username or "\n" in username:
        raise MalformedOutputError(f"Unexpected login from gh api /user: {username!r}")
    return username


def get_orgs(gh: GhCli) -> list[str]:
    """Lists the logins of every organization the user belongs to."""
    try:
        output = gh.api("/user/orgs", ".[].login", paginate=True)
    except (CommandError, OSError) as e:
        raise DiscoveryError(f"Could not list organizations: {e}") from e
    return [line.strip() for line in output.splitlines() if line.strip()]


def _require(item: dict, key: str, kind: type, index: int) -> Any:
    if key not in item:
        raise MalformedOutputError(f"Repository #{index} is missing field '{key}'")
    value = item[key]
    if not isinstance(value, kind):
        raise MalformedOutputError(
            f"Repository #{index} field '{key}' should be {kind.__name__}, "
            f"got {type(value).__name__}"
        )
    return value


def parse_repo_list(raw: str, owner_kind: OwnerKind) -> list[RepositoryRecord]:
    """Validates and converts the JSON emitted by `gh repo list --json`.

    Args:
        raw (str): The raw stdout of the command.
        owner_kind (OwnerKind): Whether these repositories belong to the user
                                or an organization.

    Returns:
        list[RepositoryRecord]: One record per array element, in input order.

    Raises:
        MalformedOutputError: If the payload deviates from the expected schema.
    """
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedOutputError(f"gh repo list returned invalid JSON: {e}") from e

    if not isinstance(payload, list):
        raise MalformedOutputError(
            f"gh repo list returned {type(payload).__name__}, expected a list"
        )

    records = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            raise MalformedOutputError(f"Repository #{index} is not an object")

        nwo = _require(item, "nameWithOwner", str, index)
        owner, sep, name = nwo.partition("/")
        if not sep or not owner or not name or "/" in name:
            raise MalformedOutputError(
                f"Repository #{index} has an invalid nameWithOwner: {nwo!r}"
            )
        url = _require(item, "url", str, index)
        is_fork = _require(item, "isFork", bool, index)
        is_archived = _require(item, "isArchived", bool, index)
        visibility = _require(item, "visibility", str, index)

        if "defaultBranchRef" not in item:
            raise MalformedOutputError(
                f"Repository #{index} is missing field 'defaultBranchRef'"
            )
        branch_ref = item["defaultBranchRef"]
        if branch_ref is None:
            default_branch = ""
        elif isinstance(branch_ref, dict) and isinstance(branch_ref.get("name"), str):
            default_branch = branch_ref["name"]
        else:
            raise MalformedOutputError(
                f"Repository #{index} has an invalid defaultBranchRef"
            )

        records.append(
            RepositoryRecord(
                canonical_id=nwo,
                clone_url=url,
                is_fork=is_fork,
                is_archived=is_archived,
                owner_kind=owner_kind,
                default_branch=default_branch,
                visibility=visibility.lower(),
            )
        )
    return records


def list_repos(
    gh: GhCli,
    owner: str,
    owner_kind: OwnerKind,
    limit: int = DEFAULT_REPO_LIMIT,
) -> list[RepositoryRecord]:
    """Lists every repository of a single owner.

    Raises:
        DiscoveryError: If gh fails or returns malformed output.
    """
    try:
        raw = gh.repo_list(owner, limit, REPO_JSON_FIELDS)
    except (CommandError, OSError) as e:
        raise DiscoveryError(f"Could not list repositories of {owner}: {e}") from e
    records = parse_repo_list(raw, owner_kind)
    if len(records) >= limit:
        logger.warning(
            f"{owner}: listing hit the limit of {limit} repositories; "
            "some may be missing."
        )
    return records


def count_repos(gh: GhCli, owner: str, limit: int = DEFAULT_REPO_LIMIT) -> int:
    return len(list_repos(gh, owner, OwnerKind.ORGANIZATION, limit))


def resolve_owners(filters: Filters, username: str, orgs: list[str]) -> list[str]:
    """Determines which owners to scan, honouring the scope selection.

    Raises:
        DiscoveryError: If an explicitly requested org is not one of the user's.
    """
    if filters.orgs:
        known = {o.lower() for o in orgs}
        invalid = [o for o in filters.orgs if o.lower() not in known]
        if invalid:
            raise DiscoveryError(
                f"not a member of org(s): {', '.join(invalid)}\n"
                f"Your orgs: {', '.join(orgs)}"
            )
        wanted = {o.lower() for o in filters.orgs}
        return [o for o in orgs if o.lower() in wanted]
    if filters.orgs_only:
        return list(orgs)
    if filters.personal_only:
        return [username]
    return [username, *orgs]


def iter_repositories(
    gh: GhCli,
    filters: Filters,
    username: str,
    orgs: list[str],
    console: Console | None = None,
) -> Iterator[RepositoryRecord]:
    """Lazily yields every matching repository, each canonical id at most once.

    Owners are scanned in order; records from a failing owner are lost but
    everything already yielded remains valid. Once the last owner has been
    listed, the fork/archived exclusions and the match count are reported.

    Args:
        gh (GhCli): The GitHub CLI wrapper.
        filters (Filters): Scope and repository filters.
        username (str): The authenticated user.
        orgs (list[str]): The user's organizations.
        console (Console | None, optional): Where scan progress is printed.
            Defaults to a silent console.

    Raises:
        DiscoveryError: If any owner cannot be listed.
    """
    out = console or Console(quiet=True)
    owners = resolve_owners(filters, username, orgs)
    out.print(
        f"Scanning: {escape(', '.join(owners))} ({len(owners)} owner(s))",
        highlight=False,
    )
    logger.info(f"Scanning {len(owners)} owner(s): {', '.join(owners)}")

    seen: set[str] = set()
    forks = archived = found = 0
    for owner in owners:
        kind = (
            OwnerKind.PERSONAL
            if owner.lower() == username.lower()
            else OwnerKind.ORGANIZATION
        )
        records = list_repos(gh, owner, kind, filters.repo_limit)
        excluded = 0
        for record in sorted(records, key=lambda r: r.key):
            if record.key in seen:
                continue
            seen.add(record.key)
            if not filters.accepts(record):
                excluded += 1
                # Mirrors the order of checks in Filters.accepts.
                if filters.no_forks and record.is_fork:
                    forks += 1
                elif filters.no_archived and record.is_archived:
                    archived += 1
                continue
            found += 1
            yield record
        if excluded:
            logger.info(f"{owner}: excluded {excluded} repo(s) by filters")

    if forks:
        out.print(f"Excluded {forks} fork(s)")
    if archived:
        out.print(f"Excluded {archived} archived repo(s)")
    out.print(f"Found {found} repo(s)")
    logger.info(f"DISCOVERED {found} repo(s)")
