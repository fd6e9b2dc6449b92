"""
GitLab Merge Request Migration Tool

Migrates the merge requests of a GitLab project to pull requests of a GitHub
repository, with their discussions, approvals and final state. Runs can be
interrupted and resumed.
"""

from __future__ import annotations

from .cli import main
from .config import MigrationConfig, MigrationContext
from .exceptions import (
    ErrorKind,
    GatewayError,
    MigrationError,
    NoDiffError,
    OperationCancelledError,
    RateLimitedError,
    RetriesExhaustedError,
)
from .migrator import MergeRequestMigrator
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "ErrorKind",
    "GatewayError",
    "MergeRequestMigrator",
    "MigrationConfig",
    "MigrationContext",
    "MigrationError",
    "NoDiffError",
    "OperationCancelledError",
    "RateLimitedError",
    "RetriesExhaustedError",
    "main",
    "setup_logging",
]
