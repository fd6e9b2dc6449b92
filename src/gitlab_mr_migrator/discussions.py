"""Recreate GitLab merge request discussions as GitHub pull request comments.

GitLab threads every discussion and may anchor it to lines of the diff.
GitHub has threaded review comments, which must sit on lines visible in the
pull request's diff, and flat conversation comments. Each discussion is
therefore routed on its first note:

- system notes that only record bookkeeping (assignments, title changes,
  approvals, ...) are dropped,
- "mentioned in commit" notes become a comment on that commit pointing back
  at the pull request,
- other system notes become a flat comment marked as coming from the system,
- anchored notes become a review comment whose replies are threaded under it,
- everything else, and any review comment GitHub rejects, becomes a flat
  comment, with all replies merged into a single follow-up comment.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import TYPE_CHECKING, Final

from .exceptions import GatewayError, MigrationError
from .utils import MAX_COMMENT_LENGTH, format_datetime, truncate_text, wrap_as_resolved

if TYPE_CHECKING:
    from github.PullRequest import PullRequest

    from .config import MigrationContext
    from .models import Discussion, MergeRequest, Note, NotePosition

logger: logging.Logger = logging.getLogger(__name__)

SYSTEM_PREFIX: Final[str] = "**[system]** "
REPLY_SEPARATOR: Final[str] = "\n\n----\n"

_COMMIT_MENTION: Final[re.Pattern[str]] = re.compile(r"mentioned in commit (?:\S+@)?([0-9a-f]{7,40})")

# System notes with no value on GitHub
_NOISE_MARKERS: Final[tuple[str, ...]] = (
    "closed",
    "reset approvals ",
    "assigned to",
    "Changed title",
    "Assignee ",
    "Status changed",
    "mentioned in ",
    "canceled the automatic merge",
    "changed the description",
    "enabled an automatic merge",
    "Added ",
    "added ",
    "changed title from",
    "marked the checklist item",
    "approved this merge request",
    "requested review",
    "resolved all threads",
)


class Route(Enum):
    """Where the root note of a discussion goes."""

    DROP = "drop"
    COMMIT_COMMENT = "commit_comment"
    SYSTEM_COMMENT = "system_comment"
    FLAT_COMMENT = "flat_comment"
    REVIEW_COMMENT = "review_comment"


def mentioned_commit(body: str) -> str | None:
    match = _COMMIT_MENTION.search(body)
    return match.group(1) if match else None


def is_noise(body: str) -> bool:
    return any(marker in body for marker in _NOISE_MARKERS)


def route_for(discussion: Discussion) -> Route:
    root = discussion.root
    if root.system:
        if mentioned_commit(root.body):
            return Route.COMMIT_COMMENT
        if is_noise(root.body):
            return Route.DROP
        return Route.SYSTEM_COMMENT
    if discussion.individual_note or root.position is None:
        return Route.FLAT_COMMENT
    return Route.REVIEW_COMMENT


def resolve_line_range(position: NotePosition | None) -> tuple[int | None, int | None]:
    """Return ``(start_line, end_line)`` for a review comment.

    The non-zero line numbers of both ends of the range, old and new side,
    are sorted; the smallest starts the range and the largest ends it.
    ``start_line`` is None for single-line comments, and both are None when
    the position has no line numbers at all.
    """
    if position is None:
        return None, None

    numbers: list[int] = []
    for endpoint in (position.start, position.end):
        if endpoint is not None:
            numbers.extend(n for n in (endpoint.old_line, endpoint.new_line) if n)
    if not numbers:
        # Older notes only record the single line
        numbers.extend(n for n in (position.old_line, position.new_line) if n)
    if not numbers:
        return None, None

    numbers.sort()
    start, end = numbers[0], numbers[-1]
    return (start if start < end else None), end


def resolve_side(position: NotePosition | None) -> str:
    """``LEFT`` when the anchor only has old-side lines (removed lines), else ``RIGHT``."""
    if position is None:
        return "RIGHT"
    lines = [(e.old_line, e.new_line) for e in (position.start, position.end) if e is not None]
    if not any(old or new for old, new in lines):
        lines = [(position.old_line, position.new_line)]
    has_old = any(old for old, _ in lines)
    has_new = any(new for _, new in lines)
    return "LEFT" if has_old and not has_new else "RIGHT"


def format_note_body(note: Note) -> str:
    """Note text followed by its author and time."""
    text = truncate_text(note.body, MAX_COMMENT_LENGTH)
    return f"{text}\nby `{note.author.display}` at `{format_datetime(note.created_at)}`"


def comment_body(text: str, *, resolved: bool) -> str:
    """Final comment text: cut to GitHub's limit and collapsed when resolved."""
    body = truncate_text(text, MAX_COMMENT_LENGTH)
    if resolved:
        body = wrap_as_resolved(body)
    return body


class DiscussionMigrator:
    """Posts the discussions of one merge request to its pull request."""

    def __init__(self, ctx: MigrationContext) -> None:
        self.ctx: MigrationContext = ctx

    def migrate_all(self, mr: MergeRequest, pr: PullRequest) -> int:
        """Migrate every discussion, skipping those that fail.

        Returns:
            Number of discussions that failed
        """
        try:
            discussions = self.ctx.source.list_discussions(mr.iid, self.ctx.options.max_discussions)
        except MigrationError as e:
            logger.warning(f"Failed to get discussions of MR !{mr.iid}: {e}")
            return 0

        failed = 0
        for discussion in discussions:
            try:
                self.migrate(mr, pr, discussion)
            except GatewayError as e:
                failed += 1
                logger.warning(
                    f"Failed to migrate discussion {discussion.id} of MR !{mr.iid} ({e.kind.value}): {e}"
                )

        logger.debug(f"Migrated {len(discussions) - failed}/{len(discussions)} discussions of MR !{mr.iid}")
        return failed

    def migrate(self, mr: MergeRequest, pr: PullRequest, discussion: Discussion) -> None:
        root = discussion.root
        route = route_for(discussion)
        gateway = self.ctx.gateway

        if route is Route.DROP:
            logger.debug(f"Dropping system note of MR !{mr.iid}: {root.body}")
            return

        if route is Route.COMMIT_COMMENT:
            self._link_commit(pr, root)
            return

        if route is Route.SYSTEM_COMMENT:
            gateway.create_issue_comment(pr, comment_body(SYSTEM_PREFIX + root.body, resolved=root.resolved))
            return

        review_comment_id: int | None = None
        if route is Route.REVIEW_COMMENT:
            review_comment_id = self._create_review_comment(pr, root)
        if review_comment_id is None:
            gateway.create_issue_comment(pr, comment_body(format_note_body(root), resolved=root.resolved))

        self._migrate_replies(pr, discussion.replies, review_comment_id)

    def _link_commit(self, pr: PullRequest, root: Note) -> None:
        """Comment on the mentioned commit, or on the PR if the commit is unknown to GitHub."""
        sha = mentioned_commit(root.body)
        assert sha is not None
        body = f"Related PR: [{pr.title}]({pr.html_url})"
        try:
            self.ctx.gateway.create_commit_comment(sha, body)
        except GatewayError as e:
            logger.debug(f"Commit comment on {sha} failed, commenting on PR #{pr.number} instead: {e}")
            self.ctx.gateway.create_issue_comment(pr, comment_body(body, resolved=root.resolved))

    def _create_review_comment(self, pr: PullRequest, root: Note) -> int | None:
        """Try to anchor the root note to its lines; None if GitHub refused."""
        position = root.position
        assert position is not None
        start_line, end_line = resolve_line_range(position)
        if end_line is None:
            return None

        try:
            comment = self.ctx.gateway.create_review_comment(
                pr,
                body=comment_body(format_note_body(root), resolved=root.resolved),
                commit_sha=pr.head.sha,
                path=position.path,
                line=end_line,
                start_line=start_line,
                side=resolve_side(position),
            )
        except GatewayError as e:
            # Typically a line outside of the PR's diff hunks
            logger.debug(f"Review comment on {position.path}:{end_line} rejected, using a PR comment: {e}")
            return None
        return comment.id

    def _migrate_replies(self, pr: PullRequest, replies: list[Note], review_comment_id: int | None) -> None:
        replies = [note for note in replies if not note.system]
        if not replies:
            return

        if review_comment_id is not None:
            for note in replies:
                self.ctx.gateway.create_review_comment_reply(
                    pr, review_comment_id, comment_body(format_note_body(note), resolved=note.resolved)
                )
            return

        # Flat comments cannot be threaded, so all replies go into one
        merged = "".join(
            comment_body(format_note_body(note), resolved=note.resolved) + REPLY_SEPARATOR for note in replies
        )
        self.ctx.gateway.create_issue_comment(pr, truncate_text(merged, MAX_COMMENT_LENGTH))
