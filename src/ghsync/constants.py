import os
from pathlib import Path

"""Global constants and path definitions for ghsync.

This module defines the filesystem layout (adhering to XDG standards where
applicable), the application identifier, and the defaults used when talking to
the GitHub CLI and running backups.
"""

# --- Identity ---
APP_NAME = "ghsync"
"""str: The application name, also used as the logger name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "ghsync"
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "ghsync.log"
"""Path: The rotating log file."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/ghsync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- GitHub CLI ---
GH_BIN = "gh"
GIT_BIN = "git"

REPO_JSON_FIELDS = [
    "nameWithOwner",
    "url",
    "isFork",
    "isArchived",
    "visibility",
    "defaultBranchRef",
]
"""list[str]: Fields requested from `gh repo list --json`."""

DEFAULT_REPO_LIMIT = 500
"""int: Upper bound passed to `gh repo list --limit` per owner."""

VISIBILITIES = ("public", "private", "internal")

# --- Backup Defaults ---
DEFAULT_JOBS = 4
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 2
DEFAULT_MAX_DELAY = 30

STAGING_SUFFIX = ".ghsync-partial"
"""str: Suffix of the sibling directory a fresh clone is staged in."""

# Environment applied to every git/gh subprocess so nothing blocks on a prompt.
NON_INTERACTIVE_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_SSH_COMMAND": "ssh -o BatchMode=yes",
    "GH_PROMPT_DISABLED": "1",
}

# --- Exit Codes ---
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_DISCOVERY = 2
EXIT_INTERRUPTED = 130
