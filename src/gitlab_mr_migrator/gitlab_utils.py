from __future__ import annotations

import itertools
import logging
import os
from typing import TYPE_CHECKING, Any, Final

from gitlab import Gitlab
from gitlab.exceptions import GitlabError

from . import utils
from .exceptions import MigrationError
from .models import Approval, Author, Discussion, MergeRequest, Note, parse_timestamp

if TYPE_CHECKING:
    from gitlab.v4.objects import Project as GitlabProject
    from gitlab.v4.objects import ProjectMergeRequest

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_TOKEN_ENV_VAR: Final[str] = "GITLAB_TOKEN"  # noqa: S105
_DEFAULT_TOKEN_PASS_PATH: Final[str] = "gitlab/cli/ro_token"  # noqa: S105

PAGE_SIZE: Final[int] = 100


def get_token(pass_path: str | None = None) -> str | None:
    """Get GitLab token from pass path, env var GITLAB_TOKEN, or default pass location."""
    # Try pass path first
    if pass_path:
        return utils.get_pass_value(pass_path)

    # Try environment variable
    token: str | None = os.environ.get(_TOKEN_ENV_VAR)
    if token:
        return token

    # Try default pass path or default
    try:
        return utils.get_pass_value(_DEFAULT_TOKEN_PASS_PATH)
    except (ValueError, utils.PassError):
        logger.warning("No GitLab token specified nor found")
        return None


def get_client(url: str, token: str | None = None) -> Gitlab:
    """Get a GitLab client using the token."""
    return Gitlab(url, private_token=token, retry_transient_errors=True)


def merge_request_from_attributes(attrs: dict[str, Any]) -> MergeRequest:
    """Build a MergeRequest from the attributes of a python-gitlab merge request."""
    diff_refs: dict[str, Any] = attrs.get("diff_refs") or {}
    return MergeRequest(
        iid=attrs["iid"],
        title=attrs.get("title") or "",
        state=attrs.get("state") or "opened",
        description=attrs.get("description") or "",
        author=Author.from_dict(attrs.get("author")),
        web_url=attrs.get("web_url") or "",
        created_at=parse_timestamp(attrs.get("created_at")),
        base_sha=diff_refs.get("base_sha") or "",
        head_sha=diff_refs.get("head_sha") or "",
        squash_commit_sha=attrs.get("squash_commit_sha") or "",
        draft=bool(attrs.get("draft", attrs.get("work_in_progress", False))),
    )


def discussion_from_attributes(attrs: dict[str, Any]) -> Discussion:
    """Build a Discussion from the attributes of a python-gitlab discussion."""
    return Discussion(
        id=str(attrs.get("id", "")),
        notes=[Note.from_dict(note) for note in attrs.get("notes") or []],
        individual_note=bool(attrs.get("individual_note")),
    )


def apply_approval_events(approvals: list[Approval], events: list[dict[str, Any]]) -> None:
    """Replace approval timestamps with those of matching "approved" state events.

    Events are applied in chronological order, so the latest approval event of
    a user wins.
    """
    approved_at = {}
    ordered = sorted(events, key=lambda e: e.get("created_at") or "")
    for event in ordered:
        user = event.get("user") or {}
        timestamp = parse_timestamp(event.get("created_at"))
        if event.get("state") == "approved" and user.get("username") and timestamp:
            approved_at[user["username"]] = timestamp

    for approval in approvals:
        if approval.username in approved_at:
            approval.approved_at = approved_at[approval.username]


class GitlabSource:
    """Read access to the merge requests of one GitLab project."""

    def __init__(self, client: Gitlab, project_path: str) -> None:
        self.client: Gitlab = client
        self.project_path: str = project_path
        self._project: GitlabProject | None = None

    @property
    def project(self) -> GitlabProject:
        if self._project is None:
            try:
                self._project = self.client.projects.get(self.project_path)
            except GitlabError as e:
                msg = f"Failed to load GitLab project {self.project_path}: {e}"
                raise MigrationError(msg) from e
        return self._project

    @property
    def clone_url(self) -> str:
        return self.project.http_url_to_repo

    def _merge_request(self, iid: int) -> ProjectMergeRequest:
        # lazy: only builds the object, subresources are fetched on demand
        return self.project.mergerequests.get(iid, lazy=True)

    def list_merge_requests(self, page: int) -> list[MergeRequest]:
        """Return one page of merge requests, oldest first."""
        try:
            mrs = self.project.mergerequests.list(
                order_by="created_at", sort="asc", per_page=PAGE_SIZE, page=page, get_all=False
            )
        except GitlabError as e:
            msg = f"Failed to list merge requests (page {page}): {e}"
            raise MigrationError(msg) from e
        return [merge_request_from_attributes(mr.attributes) for mr in mrs]

    def get_merge_request(self, iid: int) -> MergeRequest:
        """Fetch full details, including diff refs, of one merge request."""
        try:
            mr = self.project.mergerequests.get(iid)
        except GitlabError as e:
            msg = f"Failed to get details of MR !{iid}: {e}"
            raise MigrationError(msg) from e
        return merge_request_from_attributes(mr.attributes)

    def has_diffs(self, iid: int) -> bool:
        """Check whether GitLab still has any file diff for the merge request."""
        path = f"/projects/{self.project.id}/merge_requests/{iid}/diffs"
        try:
            diffs = self.client.http_get(path, query_data={"per_page": 1})
        except GitlabError as e:
            msg = f"Failed to list diffs of MR !{iid}: {e}"
            raise MigrationError(msg) from e
        return bool(diffs)

    def list_discussions(self, iid: int, max_count: int = 0) -> list[Discussion]:
        """Return the discussions of a merge request, at most ``max_count`` when positive."""
        try:
            iterator = self._merge_request(iid).discussions.list(iterator=True)
            items = itertools.islice(iterator, max_count) if max_count > 0 else iterator
            discussions = [discussion_from_attributes(d.attributes) for d in items]
        except GitlabError as e:
            msg = f"Failed to get discussions of MR !{iid}: {e}"
            raise MigrationError(msg) from e
        return [d for d in discussions if d.notes]

    def get_state_events(self, iid: int) -> list[dict[str, Any]]:
        try:
            events = self._merge_request(iid).resourcestateevents.list(get_all=True)
        except GitlabError as e:
            msg = f"Failed to list state events of MR !{iid}: {e}"
            raise MigrationError(msg) from e
        return [event.attributes for event in events]

    def get_approvals(self, iid: int) -> list[Approval]:
        """Return who approved the merge request, with best-known timestamps.

        Failing to read the state events only costs accurate timestamps and is
        logged; failing to read the approvals themselves raises.
        """
        mr = self._merge_request(iid)
        try:
            # Fails on instances where approvals are unavailable for the project
            mr.approvals.get()
            state = mr.approval_state.get()
        except GitlabError as e:
            msg = f"Failed to get approval state of MR !{iid}: {e}"
            raise MigrationError(msg) from e

        approvals: list[Approval] = []
        seen: set[str] = set()
        for rule in state.attributes.get("rules") or []:
            for approver in rule.get("approved_by") or []:
                username = (approver or {}).get("username")
                if not username or username in seen:
                    continue
                seen.add(username)
                approvals.append(Approval(username=username))

        try:
            events = self.get_state_events(iid)
        except MigrationError as e:
            logger.warning(f"Failed to get MR events for approval timestamps: {e}")
        else:
            apply_approval_events(approvals, events)

        logger.debug(f"Found {len(approvals)} approvals for MR !{iid}")
        return approvals
