"""
Command-line interface for the GitLab merge request migration tool.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from . import github_utils as ghu
from . import gitlab_utils as glu
from .config import MigrationConfig, MigrationContext
from .exceptions import MigrationError, OperationCancelledError
from .git_utils import WorkingCopy, mirror_repository
from .migrator import MergeRequestMigrator
from .models import MigrationOptions
from .retry import RetryingCaller
from .utils import PassError, setup_logging

if TYPE_CHECKING:
    from types import FrameType

logger: logging.Logger = logging.getLogger(__name__)

EXIT_CANCELLED = 130


def parse_mr_ids(value: str) -> list[int]:
    """Parse a comma-separated list of merge request iids, e.g. ``1,2,3``."""
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError as e:
        msg = f"invalid merge request id list: {value!r}"
        raise argparse.ArgumentTypeError(msg) from e


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Migrate GitLab merge requests, with discussions and approvals, to GitHub pull requests"
    )

    # Positional arguments
    _ = parser.add_argument("gitlab_project", help="GitLab project path (namespace/project)")
    _ = parser.add_argument("github_repo", help="GitHub repository path (owner/repo)")

    _ = parser.add_argument("--gitlab-url", default="https://gitlab.com", help="GitLab instance URL")
    _ = parser.add_argument(
        "--working-dir", type=Path, default=Path("./tmp"), help="Directory for the local working copy"
    )

    _ = parser.add_argument(
        "--mr-ids", type=parse_mr_ids, default=[], help="Only migrate these merge requests (comma-separated iids)"
    )
    _ = parser.add_argument(
        "--continue-from", type=int, default=0, help="Skip merge requests with a lower iid (ignored with --mr-ids)"
    )
    _ = parser.add_argument(
        "--max-discussions", type=int, default=0, help="Maximum discussions migrated per merge request (0 = all)"
    )

    _ = parser.add_argument(
        "--visibility",
        choices=["PRIVATE", "INTERNAL", "PUBLIC"],
        default="PRIVATE",
        help="Visibility of the GitHub repository if it has to be created",
    )
    _ = parser.add_argument(
        "--skip-mirror", action="store_true", help="Do not push GitLab branches and tags to GitHub first"
    )
    _ = parser.add_argument(
        "--delete-branches", action="store_true", help="Delete the helper branches once a PR is closed"
    )

    _ = parser.add_argument(
        "--gitlab-pass-token", help="Path for GitLab token in pass utility (default: gitlab/cli/ro_token)"
    )
    _ = parser.add_argument(
        "--github-pass-token", help="Path for GitHub token in pass utility (default: github/cli/token)"
    )

    _ = parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    return parser.parse_args(argv)


def install_signal_handlers(cancel_event: threading.Event) -> None:
    """Turn SIGINT and SIGTERM into a cancellation request checked between operations."""

    def handle(signum: int, _frame: FrameType | None) -> None:
        logger.warning(f"Received {signal.Signals(signum).name}, stopping after the current operation")
        cancel_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, handle)


def build_context(args: argparse.Namespace, cancel_event: threading.Event) -> MigrationContext:
    """Resolve tokens, prepare both repositories and the working copy."""
    gitlab_token = glu.get_token(args.gitlab_pass_token)
    github_token = ghu.get_token(args.github_pass_token)

    config = MigrationConfig(
        gitlab_project_path=args.gitlab_project,
        github_repo_path=args.github_repo,
        gitlab_url=args.gitlab_url,
        working_dir=args.working_dir,
        gitlab_token=gitlab_token,
        github_token=github_token,
        visibility=args.visibility,
    )
    options = MigrationOptions(
        mr_ids=args.mr_ids,
        continue_from=args.continue_from,
        max_discussions=args.max_discussions,
        delete_branches=args.delete_branches,
    )

    source = glu.GitlabSource(glu.get_client(config.gitlab_url, gitlab_token), config.gitlab_project_path)
    repo = ghu.ensure_repo(
        ghu.get_client(github_token),
        config.github_repo_path,
        gitlab_project_path=config.gitlab_project_path,
        gitlab_project_url=config.gitlab_project_url,
        visibility=config.visibility,
    )

    if args.skip_mirror:
        logger.info("Skipping repository mirroring")
    else:
        mirror_repository(source.clone_url, repo.clone_url, gitlab_token, github_token)

    working_copy = WorkingCopy(
        config.working_dir / config.github_repo_name, source_token=gitlab_token, target_token=github_token
    )
    working_copy.prepare(repo.clone_url, source.clone_url)

    gateway = ghu.GithubGateway(
        repo, RetryingCaller(config.retry_policy, cancel_event), comment_interval=config.comment_interval
    )
    return MigrationContext(
        config=config,
        source=source,
        gateway=gateway,
        working_copy=working_copy,
        options=options,
        cancel_event=cancel_event,
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)

    # Setup logging
    verbose: bool = getattr(args, "verbose", False)
    setup_logging(verbose=verbose)

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    try:
        ctx = build_context(args, cancel_event)
        stats = MergeRequestMigrator(ctx).migrate()
    except OperationCancelledError:
        logger.warning("Migration cancelled, run again to resume")
        sys.exit(EXIT_CANCELLED)
    except (MigrationError, PassError, ValueError):
        logger.exception("Migration failed")
        sys.exit(1)

    for error in stats.errors:
        logger.warning(error)
    for key, value in stats.as_dict().items():
        print(f"{key}: {value}")  # noqa: T201
    sys.exit(0)
