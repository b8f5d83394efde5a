"""ghsync: Back up every GitHub repository you can reach.

This package discovers personal and organization repositories through the
GitHub CLI and mirrors them into a local directory tree using a bounded pool
of concurrent workers.
"""

from . import (
    aggregator,
    cli,
    config,
    constants,
    errors,
    executor,
    git_wrapper,
    inventory,
    models,
    pipeline,
    work_queue,
)

__all__ = [
    "aggregator",
    "cli",
    "config",
    "constants",
    "errors",
    "executor",
    "git_wrapper",
    "inventory",
    "models",
    "pipeline",
    "work_queue",
]
