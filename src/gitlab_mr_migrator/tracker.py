"""Find out which merge requests were already migrated.

The destination itself is the checkpoint: a closed pull request whose title
starts with ``GL#<iid> `` counts as a finished migration of merge request
``iid``. Pull requests still open at start-up were left behind by an
interrupted run; they are renamed so that their title no longer parses and
closed, so that the merge request gets migrated again from scratch.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Final

from .utils import MAX_PR_TITLE_LENGTH, truncate_text

if TYPE_CHECKING:
    from .config import MigrationContext

logger: logging.Logger = logging.getLogger(__name__)

TITLE_MARKER: Final[str] = "GL#"
CLOSED_SUFFIX: Final[str] = "[Closed]"
FAILED_PREFIX: Final[str] = "[Failed]"

_MARKER_PATTERN: Final[re.Pattern[str]] = re.compile(rf"^{re.escape(TITLE_MARKER)}(\d+)(?:\s|$)")


def format_title_marker(iid: int) -> str:
    return f"{TITLE_MARKER}{iid}"


def parse_title_marker(title: str) -> int | None:
    """Return the merge request iid encoded at the start of a PR title, if any."""
    match = _MARKER_PATTERN.match(title)
    if match is None:
        return None
    return int(match.group(1))


def failed_title(title: str) -> str:
    """Relabel a stale PR title, staying within GitHub's title length."""
    return truncate_text(f"{FAILED_PREFIX} {title}", MAX_PR_TITLE_LENGTH)


def collect_migrated_ids(closed_titles: list[str]) -> set[int]:
    migrated: set[int] = set()
    for title in closed_titles:
        iid = parse_title_marker(title)
        if iid is not None:
            migrated.add(iid)
    return migrated


class ResumeTracker:
    """Builds the set of migrated iids and cleans up leftovers of failed runs."""

    def __init__(self, ctx: MigrationContext) -> None:
        self.ctx: MigrationContext = ctx

    def load_migrated_ids(self) -> set[int]:
        titles = self.ctx.gateway.list_pull_request_titles("closed")
        migrated = collect_migrated_ids(titles)
        logger.info(f"Found {len(migrated)} already migrated merge requests")
        return migrated

    def close_stale_pull_requests(self) -> int:
        """Rename and close every open PR. Any failure propagates and ends the run."""
        open_prs = self.ctx.gateway.list_pull_requests("open")
        for pr in open_prs:
            logger.warning(f"Closing PR #{pr.number} left open by a previous run: {pr.title}")
            self.ctx.gateway.update_pull_request_title(pr, failed_title(pr.title))
            self.ctx.gateway.close_pull_request(pr)
        return len(open_prs)
