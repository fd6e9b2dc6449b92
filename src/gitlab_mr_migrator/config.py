"""Run configuration and the context object handed to every migration step."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from .exceptions import MigrationError, OperationCancelledError
from .models import MigrationOptions
from .retry import RetryPolicy

if TYPE_CHECKING:
    from .git_utils import WorkingCopy
    from .github_utils import GithubGateway
    from .gitlab_utils import GitlabSource

Visibility = Literal["PRIVATE", "INTERNAL", "PUBLIC"]


@dataclass
class MigrationConfig:
    """Settings that stay fixed for the whole run."""

    gitlab_project_path: str
    github_repo_path: str
    gitlab_url: str = "https://gitlab.com"
    working_dir: Path = Path("./tmp")
    gitlab_token: str | None = None
    github_token: str | None = None
    visibility: Visibility = "PRIVATE"
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    # Pause before each content-creating call (GitHub secondary rate limits)
    comment_interval: float = 1.0

    def __post_init__(self) -> None:
        parts = self.github_repo_path.strip().split("/")
        if len(parts) != 2 or not all(parts):
            msg = (
                f"Invalid GitHub repository path '{self.github_repo_path}'. "
                "Expected format: 'owner/repository'"
            )
            raise MigrationError(msg)
        self.gitlab_url = self.gitlab_url.rstrip("/")

    @property
    def github_owner(self) -> str:
        return self.github_repo_path.split("/")[0]

    @property
    def github_repo_name(self) -> str:
        return self.github_repo_path.split("/")[1]

    @property
    def gitlab_project_url(self) -> str:
        return f"{self.gitlab_url}/{self.gitlab_project_path}"


@dataclass
class MigrationContext:
    """Everything a migration step needs, passed explicitly instead of globals."""

    config: MigrationConfig
    source: GitlabSource
    gateway: GithubGateway
    working_copy: WorkingCopy
    options: MigrationOptions = field(default_factory=MigrationOptions)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            msg = "Migration cancelled"
            raise OperationCancelledError(msg)
