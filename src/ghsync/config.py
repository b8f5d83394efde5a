import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_BASE_DELAY,
    DEFAULT_JOBS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DELAY,
    DEFAULT_REPO_LIMIT,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '2s', '1m') to seconds."""
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


def _positive_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"Expected a positive integer, got '{value}'")
    return value


@dataclass
class BackupConfig:
    """Backup destination and concurrency settings.

    Attributes:
        dest (str): Root directory receiving the `owner/name` tree.
        mirror (bool): Whether to create bare mirror clones.
        jobs (int): Number of concurrent backup workers.
        repo_limit (int): Max repositories listed per owner.
    """

    dest: str = "."
    mirror: bool = True
    jobs: int = DEFAULT_JOBS
    repo_limit: int = DEFAULT_REPO_LIMIT


@dataclass
class RetryConfig:
    """Retry policy for transient backup failures.

    Attributes:
        max_attempts (int): Total attempts per repository, including the first.
        base_delay (int): Seconds to wait after the first failure.
        max_delay (int): Upper bound on any single wait.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: int = DEFAULT_BASE_DELAY
    max_delay: int = DEFAULT_MAX_DELAY

    def delay_for(self, attempt: int) -> float:
        """Returns the backoff before retrying after failed attempt `attempt`."""
        return float(min(self.base_delay * 2 ** (attempt - 1), self.max_delay))


@dataclass
class FiltersConfig:
    """Default repository filters.

    Attributes:
        exclude (list[str]): Glob patterns of repository names to skip.
        no_forks (bool): Skip forked repositories.
        no_archived (bool): Skip archived repositories.
    """

    exclude: list[str] = field(default_factory=list)
    no_forks: bool = False
    no_archived: bool = False


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for the log file before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        backup (BackupConfig): Destination and concurrency.
        retry (RetryConfig): Retry/backoff policy.
        filters (FiltersConfig): Default repository filters.
        limits (LimitsConfig): Resource limits.
    """

    backup: BackupConfig = field(default_factory=BackupConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    filters: FiltersConfig = field(default_factory=FiltersConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from disk, applying defaults where necessary.

        Args:
            path (Path | None): An explicit config file. Defaults to CONFIG_FILE.

        Returns:
            Config: The merged configuration object.
        """
        instance = cls()
        source = path or CONFIG_FILE
        if source.exists():
            instance._merge_from_file(source)
        elif path is not None:
            logger.warning(f"Config file not found: {path}. Using defaults.")
        return instance

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance."""
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
            return
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return

        unknown = set(data) - {"backup", "retry", "filters", "limits"}
        if unknown:
            logger.warning(
                f"Unknown config sections: {', '.join(sorted(unknown))}. Ignoring."
            )

        for name in ["backup", "retry", "filters", "limits"]:
            if name in data and not isinstance(data[name], dict):
                logger.warning(
                    f"Config error: [{name}] must be a table. Using defaults."
                )
                del data[name]

        if "backup" in data:
            self.backup = self._update_dataclass("backup", self.backup, data["backup"])
        if "retry" in data:
            self.retry = self._update_dataclass("retry", self.retry, data["retry"])
        if "limits" in data:
            self.limits = self._update_dataclass("limits", self.limits, data["limits"])
        if "filters" in data:
            # Exclude patterns accumulate instead of replacing the defaults.
            section = dict(data["filters"])
            new_excludes = section.pop("exclude", [])
            self.filters = self._update_dataclass("filters", self.filters, section)
            if isinstance(new_excludes, list) and new_excludes:
                merged = [*self.filters.exclude, *map(str, new_excludes)]
                self.filters.exclude = list(dict.fromkeys(merged))
            elif new_excludes:
                logger.warning(
                    "Config error in [filters].exclude: expected a list. Ignoring."
                )

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in ["base_delay", "max_delay"]:
                    filtered_updates[k] = parse_time(v)
                elif k in ["jobs", "max_attempts", "repo_limit"]:
                    filtered_updates[k] = _positive_int(v)
                elif k == "dest":
                    if not isinstance(v, str) or not v:
                        raise ValueError(f"Expected a path string, got '{v}'")
                    filtered_updates[k] = v
                elif k in ["mirror", "no_forks", "no_archived"]:
                    if not isinstance(v, bool):
                        raise ValueError(f"Expected a boolean, got '{v}'")
                    filtered_updates[k] = v
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. "
                    "Falling back to default."
                )

        return replace(instance, **filtered_updates)
