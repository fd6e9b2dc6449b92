"""
Drives the migration of all merge requests of a GitLab project.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .branches import BranchPreparer
from .discussions import DiscussionMigrator
from .models import MigrationStats
from .pull_requests import PullRequestSynthesizer
from .selector import WorkSelector
from .tracker import ResumeTracker

if TYPE_CHECKING:
    from .config import MigrationContext
    from .models import MergeRequest

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)


class MergeRequestMigrator:
    """Migrates merge requests one at a time, oldest first.

    Steps per merge request: fetch details, probe for a diff, push the branch
    pair, open the pull request, copy the discussions, then label and close
    the pull request. Errors that leave the destination in an unknown state
    (listing, detail fetch, push, pull request creation, cancellation) end the
    run; the next run resumes after cleaning up.
    """

    def __init__(self, ctx: MigrationContext) -> None:
        self.ctx: MigrationContext = ctx
        self.tracker: ResumeTracker = ResumeTracker(ctx)
        self.branches: BranchPreparer = BranchPreparer(ctx)
        self.pull_requests: PullRequestSynthesizer = PullRequestSynthesizer(ctx)
        self.discussions: DiscussionMigrator = DiscussionMigrator(ctx)
        self.stats: MigrationStats = MigrationStats()
        # Selected but left without a PR because GitHub saw no difference
        self._skipped_items: int = 0

    def migrate(self) -> MigrationStats:
        """Execute the complete merge request migration."""
        logger.info(
            f"Starting merge request migration {self.ctx.config.gitlab_project_path} -> "
            f"{self.ctx.config.github_repo_path}"
        )

        self.stats.stale_closed = self.tracker.close_stale_pull_requests()
        migrated_ids = self.tracker.load_migrated_ids()
        selector = WorkSelector(self.ctx, migrated_ids)

        try:
            for page, selected in selector.pages():
                for listed in selected:
                    self.ctx.check_cancelled()
                    self.migrate_merge_request(listed)
                self.stats.skipped = selector.skipped + self._skipped_items
                logger.info(f"Page {page} done: {self._progress()}")
        finally:
            self.stats.skipped = selector.skipped + self._skipped_items
            logger.info(f"Merge request migration finished: {self._progress()}")

        return self.stats

    def _progress(self) -> str:
        return ", ".join(f"{key}={value}" for key, value in self.stats.as_dict().items())

    def migrate_merge_request(self, listed: MergeRequest) -> None:
        """Migrate one selected merge request.

        Raises:
            MigrationError: On failures that must end the run
        """
        self.stats.processed += 1
        mr = self.ctx.source.get_merge_request(listed.iid)
        logger.info(f"Migrating MR !{mr.iid} ({mr.state}): {mr.title}")

        has_diffs = self.ctx.source.has_diffs(mr.iid)
        branches = self.branches.prepare(mr, has_diffs=has_diffs)
        if branches is None:
            self.stats.failed += 1
            self.stats.errors.append(f"MR !{mr.iid}: could not create branches")
            return

        pr = self.pull_requests.create(mr, branches)
        if pr is None:
            self._skipped_items += 1
            return

        failed_discussions = self.discussions.migrate_all(mr, pr)
        if failed_discussions:
            self.stats.errors.append(f"MR !{mr.iid}: {failed_discussions} discussions not migrated")

        self.pull_requests.finalize(mr, pr, branches)
        self.stats.succeeded += 1
