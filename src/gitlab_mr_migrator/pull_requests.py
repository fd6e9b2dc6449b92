"""Build GitHub pull requests from GitLab merge requests."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import GatewayError, MigrationError, NoDiffError
from .tracker import CLOSED_SUFFIX, format_title_marker
from .utils import MAX_PR_BODY_LENGTH, MAX_PR_TITLE_LENGTH, format_datetime, truncate_text

if TYPE_CHECKING:
    from github.PullRequest import PullRequest

    from .config import MigrationContext
    from .models import Approval, BranchPair, MergeRequest

logger: logging.Logger = logging.getLogger(__name__)

# Room left for the metadata header in front of the description
_HEADER_ALLOWANCE = 300

_STATE_LABELS = {"closed": "closed", "merged": "merged"}


def build_title(mr: MergeRequest) -> str:
    """Title carrying the ``GL#<iid>`` marker the next run resumes from."""
    marker = format_title_marker(mr.iid)
    if mr.state == "closed":
        title = f"{marker} {CLOSED_SUFFIX} {mr.title}"
    else:
        title = f"{marker} {mr.title}"
    return truncate_text(title, MAX_PR_TITLE_LENGTH)


def format_approvals(approvals: list[Approval]) -> str:
    return "".join(
        f"- Approved by `{a.username}` on {a.approved_at.strftime('%Y-%m-%d %H:%M:%S')}\n" for a in approvals
    )


def build_body(mr: MergeRequest, approvals: list[Approval]) -> str:
    """Metadata block followed by the original description.

    Args:
        mr: The merge request
        approvals: Approvals to list, possibly empty

    Returns:
        Body no longer than GitHub accepts
    """
    description = truncate_text(mr.description, MAX_PR_BODY_LENGTH - _HEADER_ALLOWANCE)
    body = (
        f"<details><summary>{mr.author.username} Created GitLab Merge Request</summary>\n\n"
        f"**Original MR:** {mr.web_url}\n"
        f"**Created:** {format_datetime(mr.created_at)}\n"
        f"**Status:** {mr.state}\n"
        f"**Approvals:** \n{format_approvals(approvals)}\n</details>\n\n"
        f"{description}"
    )
    return truncate_text(body, MAX_PR_BODY_LENGTH)


class PullRequestSynthesizer:
    """Creates the pull request for a merge request and brings it into its final state."""

    def __init__(self, ctx: MigrationContext) -> None:
        self.ctx: MigrationContext = ctx

    def _approvals(self, mr: MergeRequest) -> list[Approval]:
        try:
            return self.ctx.source.get_approvals(mr.iid)
        except MigrationError as e:
            logger.warning(f"Failed to get approvals of MR !{mr.iid}: {e}")
            return []

    def create(self, mr: MergeRequest, branches: BranchPair) -> PullRequest | None:
        """Open the pull request.

        Returns:
            The new pull request, or None if GitHub saw no difference between the branches

        Raises:
            GatewayError: Any other creation failure
        """
        title = build_title(mr)
        body = build_body(mr, self._approvals(mr))
        try:
            pr = self.ctx.gateway.create_pull_request(
                title=title, body=body, head=branches.source, base=branches.target, draft=mr.draft
            )
        except NoDiffError:
            logger.debug(f"No difference between {branches.source} and {branches.target}, MR !{mr.iid} ignored")
            return None

        logger.info(f"Created GitHub PR #{pr.number} {pr.html_url} for {mr.web_url}")
        return pr

    def finalize(self, mr: MergeRequest, pr: PullRequest, branches: BranchPair | None = None) -> None:
        """Label and close the pull request of a closed or merged merge request.

        Failures are logged, the pull request stays usable either way.
        """
        label = _STATE_LABELS.get(mr.state)
        if label is None:
            return

        try:
            self.ctx.gateway.add_labels(pr, [label])
        except GatewayError as e:
            logger.warning(f"Failed to add label '{label}' to PR #{pr.number}: {e}")

        try:
            self.ctx.gateway.close_pull_request(pr)
        except GatewayError as e:
            logger.warning(f"Failed to close PR #{pr.number}: {e}")
            return
        logger.debug(f"Closed GitHub PR #{pr.number}")

        if branches is not None and self.ctx.options.delete_branches:
            for branch in (branches.source, branches.target):
                try:
                    self.ctx.gateway.delete_branch(branch)
                except GatewayError as e:
                    logger.warning(f"Failed to delete branch {branch}: {e}")
