from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, Final

from github import Auth, Github, GithubException, UnknownObjectException

from . import utils
from .exceptions import MigrationError

if TYPE_CHECKING:
    from github.IssueComment import IssueComment
    from github.PullRequest import PullRequest
    from github.PullRequestComment import PullRequestComment
    from github.Repository import Repository

    from .retry import RetryingCaller

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_TOKEN_ENV_VAR: Final[str] = "GITHUB_TOKEN"  # noqa: S105
_DEFAULT_TOKEN_PASS_PATH: Final[str] = "github/cli/token"  # noqa: S105

_CREATE_REPOSITORY_MUTATION: Final[str] = """
mutation CreateRepository($input: CreateRepositoryInput!) {
    createRepository(input: $input) {
        repository {
            id
            nameWithOwner
        }
    }
}
"""


def get_token(pass_path: str | None = None) -> str | None:
    """Get GitHub token from pass path, env var GITHUB_TOKEN, or default pass location."""
    if pass_path:
        return utils.get_pass_value(pass_path)

    token: str | None = os.environ.get(_TOKEN_ENV_VAR)
    if token:
        return token

    try:
        return utils.get_pass_value(_DEFAULT_TOKEN_PASS_PATH)
    except (ValueError, utils.PassError):
        logger.warning("No GitHub token specified nor found")
        return None


def get_client(token: str | None = None) -> Github:
    """Get a GitHub client using the token.

    PyGithub's own urllib3 retries are disabled; retries are done by
    :class:`~.retry.RetryingCaller` so that they can be classified and cancelled.
    """
    auth = Auth.Token(token) if token else None
    return Github(auth=auth, retry=None)


def get_repo(client: Github, repo_path: str) -> Repository | None:
    try:
        return client.get_repo(repo_path)
    except UnknownObjectException as e:
        if e.status == 404:
            return None
        msg = f"Error checking repository existence: {e}"
        raise MigrationError(msg) from e
    except GithubException as e:
        msg = f"Error checking repository existence: {e}"
        raise MigrationError(msg) from e


def create_repo(
    client: Github,
    repo_path: str,
    *,
    description: str,
    homepage_url: str,
    visibility: str = "PRIVATE",
) -> Repository:
    """Create the GitHub repository through GraphQL.

    The REST endpoint cannot create ``INTERNAL`` repositories for every account
    type, so GraphQL's ``createRepository`` is used instead.
    """
    owner, repo_name = repo_path.split("/")
    try:
        owner_node_id = client.get_user(owner).node_id
        variables: dict[str, Any] = {
            "input": {
                "name": repo_name,
                "ownerId": owner_node_id,
                "visibility": visibility,
                "description": description,
                "homepageUrl": homepage_url,
                "hasWikiEnabled": False,
            }
        }
        _, data = client.requester.requestJsonAndCheck(
            "POST", "/graphql", input={"query": _CREATE_REPOSITORY_MUTATION, "variables": variables}
        )
    except GithubException as e:
        msg = f"Failed to create GitHub repository {repo_path}: {e}"
        raise MigrationError(msg) from e

    if data.get("errors"):
        msg = f"Failed to create GitHub repository {repo_path}: {data['errors']}"
        raise MigrationError(msg)

    logger.info(f"Created GitHub repository {repo_path} ({visibility.lower()})")
    return client.get_repo(repo_path)


def ensure_repo(
    client: Github,
    repo_path: str,
    *,
    gitlab_project_path: str,
    gitlab_project_url: str,
    visibility: str = "PRIVATE",
) -> Repository:
    """Return the destination repository, creating it if it does not exist yet."""
    repo = get_repo(client, repo_path)
    if repo is not None:
        logger.info(f"Using existing GitHub repository {repo_path}")
        return repo

    logger.info(f"GitHub repository {repo_path} does not exist, creating it")
    return create_repo(
        client,
        repo_path,
        description=f"Migrated from GitLab: {gitlab_project_path}",
        homepage_url=gitlab_project_url,
        visibility=visibility,
    )


class GithubGateway:
    """The destination operations used by the migration, each run through the retrying caller.

    Calls that create content are preceded by ``comment_interval`` seconds of
    (cancellable) waiting to stay below GitHub's secondary rate limits.
    """

    def __init__(self, repo: Repository, caller: RetryingCaller, *, comment_interval: float = 1.0) -> None:
        self.repo: Repository = repo
        self.caller: RetryingCaller = caller
        self.comment_interval: float = comment_interval

    def _spaced(self) -> None:
        self.caller.wait(self.comment_interval)

    def list_pull_requests(self, state: str) -> list[PullRequest]:
        return self.caller.call(
            f"list {state} PRs",
            lambda: list(self.repo.get_pulls(state=state, sort="created", direction="asc")),
        )

    def list_pull_request_titles(self, state: str) -> list[str]:
        return [pr.title for pr in self.list_pull_requests(state)]

    def create_pull_request(self, *, title: str, body: str, head: str, base: str, draft: bool) -> PullRequest:
        logger.debug(f"Creating GitHub PR {head} -> {base}: {title[:50]}")
        return self.caller.call(
            f"create PR {head} -> {base}",
            lambda: self.repo.create_pull(
                base=base, head=head, title=title, body=body, draft=draft, maintainer_can_modify=True
            ),
        )

    def update_pull_request_title(self, pr: PullRequest, title: str) -> None:
        self.caller.call(f"update title of PR #{pr.number}", lambda: pr.edit(title=title))

    def close_pull_request(self, pr: PullRequest) -> None:
        self.caller.call(f"close PR #{pr.number}", lambda: pr.edit(state="closed"))

    def add_labels(self, pr: PullRequest, labels: list[str]) -> None:
        self.caller.call(f"add labels {labels} to PR #{pr.number}", lambda: pr.add_to_labels(*labels))

    def create_issue_comment(self, pr: PullRequest, body: str) -> IssueComment:
        def create() -> IssueComment:
            self._spaced()
            return pr.create_issue_comment(body)

        return self.caller.call(f"create comment on PR #{pr.number}", create)

    def create_review_comment(
        self,
        pr: PullRequest,
        *,
        body: str,
        commit_sha: str,
        path: str,
        line: int | None,
        start_line: int | None = None,
        side: str | None = None,
    ) -> PullRequestComment:
        """Create a review comment anchored to ``path``, a single line or a line range.

        ``side`` is ``LEFT`` for lines of the old file and ``RIGHT`` for the new one;
        a range starts on the same side it ends on.
        """
        kwargs: dict[str, Any] = {}
        if line is not None:
            kwargs["line"] = line
        if start_line is not None:
            kwargs["start_line"] = start_line
        if side is not None:
            kwargs["side"] = side
            if start_line is not None:
                kwargs["start_side"] = side

        def create() -> PullRequestComment:
            self._spaced()
            commit = self.repo.get_commit(commit_sha)
            return pr.create_review_comment(body, commit, path, **kwargs)

        return self.caller.call(f"create review comment on PR #{pr.number} at {path}", create)

    def create_review_comment_reply(self, pr: PullRequest, comment_id: int, body: str) -> PullRequestComment:
        def create() -> PullRequestComment:
            self._spaced()
            return pr.create_review_comment_reply(comment_id, body)

        return self.caller.call(f"reply to review comment {comment_id} on PR #{pr.number}", create)

    def create_commit_comment(self, sha: str, body: str) -> None:
        def create() -> None:
            self._spaced()
            self.repo.get_commit(sha).create_comment(body)

        self.caller.call(f"create comment on commit {sha[:12]}", create)

    def delete_branch(self, branch: str) -> None:
        self.caller.call(f"delete branch {branch}", lambda: self.repo.get_git_ref(f"heads/{branch}").delete())
        logger.debug(f"Deleted branch {branch}")
