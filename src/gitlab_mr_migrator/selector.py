"""Select the merge requests a run should migrate."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .gitlab_utils import PAGE_SIZE

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .config import MigrationContext
    from .models import MergeRequest, MigrationOptions

logger: logging.Logger = logging.getLogger(__name__)


def should_migrate(mr: MergeRequest, options: MigrationOptions, migrated_ids: set[int]) -> bool:
    """Apply the selection rules to one merge request.

    An explicit id list replaces the continuation point and also selects
    listed merge requests that were already migrated, so that they are
    migrated again. Still open merge requests are never selected.
    """
    if options.mr_ids:
        if mr.iid not in options.mr_ids:
            return False
    elif options.continue_from > 0 and mr.iid < options.continue_from:
        logger.debug(f"Skipping MR !{mr.iid} (before continue-from point): {mr.title}")
        return False
    elif mr.iid in migrated_ids:
        logger.debug(f"Skipping already migrated MR !{mr.iid}: {mr.title}")
        return False

    if mr.state == "opened":
        logger.debug(f"Skipping open MR !{mr.iid}: {mr.title}")
        return False

    return True


class WorkSelector:
    """Pages through the project's merge requests, oldest first."""

    def __init__(self, ctx: MigrationContext, migrated_ids: set[int]) -> None:
        self.ctx: MigrationContext = ctx
        self.migrated_ids: set[int] = migrated_ids
        # Merge requests listed but not selected so far
        self.skipped: int = 0

    def pages(self) -> Iterator[tuple[int, list[MergeRequest]]]:
        """Yield ``(page number, selected merge requests)`` for every page.

        Stops after the first page holding fewer than a full page of items.
        """
        page = 1
        while True:
            mrs = self.ctx.source.list_merge_requests(page)
            selected = [mr for mr in mrs if should_migrate(mr, self.ctx.options, self.migrated_ids)]
            self.skipped += len(mrs) - len(selected)
            yield page, selected
            if len(mrs) < PAGE_SIZE:
                return
            page += 1
