"""Build the branch pair a migrated pull request compares.

For each merge request a target branch is created at the merge request's base
commit and a source branch at its head (or squash) commit, then both are
force-pushed to GitHub.

GitLab keeps merge request metadata after the commits themselves have been
garbage collected. When GitLab reports no diff at all, or refuses to serve one
of the commits (``not our ref``), a synthetic pair is built instead: the
source branch is the target branch plus one empty commit. The pull request
then carries the review history without the original diff.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final

from .exceptions import GitCommandError, RefNotFoundError
from .models import BranchPair

if TYPE_CHECKING:
    from .config import MigrationContext
    from .models import MergeRequest

logger: logging.Logger = logging.getLogger(__name__)

NO_DIFF_COMMIT_MESSAGE: Final[str] = "sync no diff merge request"


def branch_pair_for(iid: int) -> BranchPair:
    return BranchPair(source=f"gitlab-mr-{iid}-source", target=f"gitlab-mr-{iid}-target")


class BranchPreparer:
    """Creates and pushes the branches of one merge request at a time."""

    def __init__(self, ctx: MigrationContext) -> None:
        self.ctx: MigrationContext = ctx

    def prepare(self, mr: MergeRequest, *, has_diffs: bool) -> BranchPair | None:
        """Create and push the branch pair for ``mr``.

        Returns:
            The pushed branches, or None when a branch could not be created for
            a reason other than an unreachable commit. The merge request should
            then be skipped.

        Raises:
            GitCommandError: Building the synthetic branches or pushing failed
        """
        working_copy = self.ctx.working_copy
        pair = branch_pair_for(mr.iid)
        use_fallback = not has_diffs or not mr.base_sha or not mr.source_sha
        target_created = False

        if not use_fallback:
            try:
                working_copy.create_branch(pair.target, mr.base_sha)
                target_created = True
            except RefNotFoundError:
                logger.info(f"Base commit {mr.base_sha} of MR !{mr.iid} is gone, migrating without diff")
                use_fallback = True
            except GitCommandError as e:
                logger.warning(f"Failed to create target branch {pair.target} at {mr.base_sha}: {e}")
                return None

        if not use_fallback:
            try:
                working_copy.create_branch(pair.source, mr.source_sha)
            except RefNotFoundError:
                logger.info(f"Head commit {mr.source_sha} of MR !{mr.iid} is gone, migrating without diff")
                use_fallback = True
            except GitCommandError as e:
                logger.warning(f"Failed to create source branch {pair.source} at {mr.source_sha}: {e}")
                return None

        if use_fallback:
            self._create_no_diff_branches(mr, pair, target_created=target_created)

        working_copy.push_branches(pair.target, pair.source)
        logger.debug(f"Pushed {pair.target} and {pair.source} for MR !{mr.iid}")
        return pair

    def _create_no_diff_branches(self, mr: MergeRequest, pair: BranchPair, *, target_created: bool) -> None:
        working_copy = self.ctx.working_copy
        if not target_created:
            working_copy.create_root_branch(pair.target, f"base of GitLab MR !{mr.iid}")
        working_copy.create_branch(pair.source, pair.target)
        working_copy.commit_empty(NO_DIFF_COMMIT_MESSAGE)
        pair.synthetic = True
