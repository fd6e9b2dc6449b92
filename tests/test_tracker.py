"""
Tests for the title marker and the resume tracker.
"""

from __future__ import annotations

import pytest

from gitlab_mr_migrator.config import MigrationContext
from gitlab_mr_migrator.exceptions import ApiError
from gitlab_mr_migrator.pull_requests import build_title
from gitlab_mr_migrator.tracker import (
    ResumeTracker,
    collect_migrated_ids,
    failed_title,
    format_title_marker,
    parse_title_marker,
)
from gitlab_mr_migrator.utils import MAX_PR_TITLE_LENGTH

from factories import make_mr, make_pr


@pytest.mark.unit
class TestTitleMarker:
    @pytest.mark.parametrize("iid", [1, 7, 42, 1000, 987654])
    def test_round_trip(self, iid: int) -> None:
        assert parse_title_marker(f"{format_title_marker(iid)} Some title") == iid

    def test_marker_alone(self) -> None:
        assert parse_title_marker("GL#12") == 12

    def test_closed_suffix(self) -> None:
        assert parse_title_marker("GL#12 [Closed] Drop feature") == 12

    @pytest.mark.parametrize(
        "title",
        ["[Failed] GL#12 Drop feature", "Fix GL#12", "GL#12abc", "GL# 12", "GL#", "", "gl#12 lower case"],
    )
    def test_titles_without_marker(self, title: str) -> None:
        assert parse_title_marker(title) is None

    def test_failed_title_breaks_marker(self) -> None:
        title = failed_title("GL#5 Something")
        assert title == "[Failed] GL#5 Something"
        assert parse_title_marker(title) is None

    def test_failed_title_of_longest_title_fits_github_limit(self) -> None:
        title = build_title(make_mr(42, state="closed", title="x" * 250))
        assert len(title) == MAX_PR_TITLE_LENGTH

        relabelled = failed_title(title)

        assert len(relabelled) <= MAX_PR_TITLE_LENGTH
        assert relabelled.startswith("[Failed] GL#42 [Closed] ")
        assert parse_title_marker(relabelled) is None

    def test_collect_migrated_ids(self) -> None:
        titles = ["GL#1 a", "GL#2 [Closed] b", "[Failed] GL#3 c", "Unrelated PR", "GL#2 duplicate"]
        assert collect_migrated_ids(titles) == {1, 2}


@pytest.mark.unit
class TestResumeTracker:
    def test_load_migrated_ids_reads_closed_prs(self, ctx: MigrationContext) -> None:
        ctx.gateway.list_pull_request_titles.return_value = ["GL#1 a", "GL#2 b", "GL#3 c"]

        assert ResumeTracker(ctx).load_migrated_ids() == {1, 2, 3}
        ctx.gateway.list_pull_request_titles.assert_called_once_with("closed")

    def test_close_stale_pull_requests(self, ctx: MigrationContext) -> None:
        first = make_pr(number=4, title="GL#8 Half done")
        second = make_pr(number=5, title="Opened by hand")
        ctx.gateway.list_pull_requests.return_value = [first, second]

        assert ResumeTracker(ctx).close_stale_pull_requests() == 2

        ctx.gateway.list_pull_requests.assert_called_once_with("open")
        assert [c.args for c in ctx.gateway.update_pull_request_title.call_args_list] == [
            (first, "[Failed] GL#8 Half done"),
            (second, "[Failed] Opened by hand"),
        ]
        assert [c.args for c in ctx.gateway.close_pull_request.call_args_list] == [(first,), (second,)]

    def test_nothing_to_clean(self, ctx: MigrationContext) -> None:
        assert ResumeTracker(ctx).close_stale_pull_requests() == 0
        ctx.gateway.close_pull_request.assert_not_called()

    def test_cleanup_failure_propagates(self, ctx: MigrationContext) -> None:
        ctx.gateway.list_pull_requests.return_value = [make_pr(number=4, title="GL#8 Half done")]
        ctx.gateway.close_pull_request.side_effect = ApiError("close PR #4", "forbidden")

        with pytest.raises(ApiError):
            ResumeTracker(ctx).close_stale_pull_requests()
