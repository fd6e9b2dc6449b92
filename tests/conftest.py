"""
Pytest configuration and fixtures.

The ``ctx`` fixture provides a migration context whose GitLab source, GitHub
gateway and working copy are mocks, so that no test touches the network or
runs git.
"""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from gitlab_mr_migrator.config import MigrationConfig, MigrationContext
from gitlab_mr_migrator.git_utils import WorkingCopy
from gitlab_mr_migrator.github_utils import GithubGateway
from gitlab_mr_migrator.gitlab_utils import GitlabSource


@pytest.fixture
def ctx() -> MigrationContext:
    config = MigrationConfig(gitlab_project_path="group/project", github_repo_path="owner/repo")

    source = Mock(spec=GitlabSource)
    source.list_merge_requests.return_value = []
    source.has_diffs.return_value = True
    source.get_approvals.return_value = []
    source.list_discussions.return_value = []

    gateway = Mock(spec=GithubGateway)
    gateway.list_pull_requests.return_value = []
    gateway.list_pull_request_titles.return_value = []

    return MigrationContext(
        config=config,
        source=source,
        gateway=gateway,
        working_copy=Mock(spec=WorkingCopy),
    )
