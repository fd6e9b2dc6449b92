"""
Tests for turning GitLab discussions into GitHub comments.
"""

from __future__ import annotations

import logging
from unittest.mock import Mock

import pytest

from gitlab_mr_migrator.config import MigrationContext
from gitlab_mr_migrator.discussions import (
    REPLY_SEPARATOR,
    SYSTEM_PREFIX,
    DiscussionMigrator,
    Route,
    comment_body,
    format_note_body,
    resolve_line_range,
    resolve_side,
    route_for,
)
from gitlab_mr_migrator.exceptions import ApiError, MigrationError
from gitlab_mr_migrator.utils import MAX_COMMENT_LENGTH, TRUNCATE_SUFFIX

from factories import make_discussion, make_mr, make_note, make_pr, make_position

SHA = "0123456789abcdef0123456789abcdef01234567"


@pytest.mark.unit
class TestResolveLineRange:
    def test_range_from_both_sides(self) -> None:
        position = make_position(start=(0, 10), end=(12, 0))
        assert resolve_line_range(position) == (10, 12)

    def test_single_line_range_has_no_start(self) -> None:
        position = make_position(start=(0, 12), end=(0, 12))
        assert resolve_line_range(position) == (None, 12)

    def test_falls_back_to_single_line(self) -> None:
        assert resolve_line_range(make_position(new_line=7)) == (None, 7)
        assert resolve_line_range(make_position(old_line=3, new_line=5)) == (3, 5)

    def test_no_lines(self) -> None:
        assert resolve_line_range(make_position()) == (None, None)
        assert resolve_line_range(None) == (None, None)


@pytest.mark.unit
class TestResolveSide:
    def test_removed_lines_are_on_the_left(self) -> None:
        assert resolve_side(make_position(start=(20, 0), end=(22, 0))) == "LEFT"
        assert resolve_side(make_position(old_line=20)) == "LEFT"

    def test_added_or_context_lines_are_on_the_right(self) -> None:
        assert resolve_side(make_position(start=(0, 10), end=(0, 12))) == "RIGHT"
        assert resolve_side(make_position(old_line=3, new_line=5)) == "RIGHT"
        assert resolve_side(make_position(new_line=7)) == "RIGHT"

    def test_no_lines(self) -> None:
        assert resolve_side(make_position()) == "RIGHT"
        assert resolve_side(None) == "RIGHT"


@pytest.mark.unit
class TestRouteFor:
    def test_commit_mention(self) -> None:
        note = make_note(f"mentioned in commit {SHA}", system=True)
        assert route_for(make_discussion(note)) is Route.COMMIT_COMMENT

    @pytest.mark.parametrize(
        "body",
        [
            "assigned to @bob",
            "changed title from **foo** to **bar**",
            "approved this merge request",
            "requested review from @carol",
            "added 3 commits",
            "mentioned in merge request !5",
            "resolved all threads",
        ],
    )
    def test_noise_dropped(self, body: str) -> None:
        assert route_for(make_discussion(make_note(body, system=True))) is Route.DROP

    def test_other_system_note(self) -> None:
        note = make_note("changed target branch from `dev` to `main`", system=True)
        assert route_for(make_discussion(note)) is Route.SYSTEM_COMMENT

    def test_individual_note_is_flat(self) -> None:
        note = make_note(position=make_position(new_line=3))
        assert route_for(make_discussion(note, individual=True)) is Route.FLAT_COMMENT

    def test_note_without_position_is_flat(self) -> None:
        assert route_for(make_discussion(make_note())) is Route.FLAT_COMMENT

    def test_anchored_note(self) -> None:
        note = make_note(position=make_position(new_line=3))
        assert route_for(make_discussion(note)) is Route.REVIEW_COMMENT


@pytest.mark.unit
class TestBodies:
    def test_format_note_body(self) -> None:
        note = make_note("Please rename this", username="bob")
        assert format_note_body(note) == "Please rename this\nby `Bob (bob)` at `2024-01-15 10:30:45 UTC`"

    def test_format_note_body_truncates_long_text(self) -> None:
        body = format_note_body(make_note("z" * (MAX_COMMENT_LENGTH + 1)))
        assert f"{TRUNCATE_SUFFIX}\nby `Bob (bob)`" in body

    def test_resolved_comment_collapsed(self) -> None:
        body = comment_body("done", resolved=True)
        assert body.startswith("<details><summary>Resolved</summary>")
        assert "done" in body
        assert body.endswith("</details>")

    def test_unresolved_comment_unchanged(self) -> None:
        assert comment_body("open point", resolved=False) == "open point"

    def test_comment_body_length_capped(self) -> None:
        assert len(comment_body("w" * (MAX_COMMENT_LENGTH * 2), resolved=True)) <= MAX_COMMENT_LENGTH


@pytest.mark.unit
class TestDiscussionMigrator:
    def test_anchored_root_with_threaded_replies(self, ctx: MigrationContext) -> None:
        pr = make_pr(head_sha="feedbeef")
        ctx.gateway.create_review_comment.return_value = Mock(id=555)
        root = make_note("Off by one?", position=make_position("lib/calc.py", start=(0, 10), end=(12, 0)))
        discussion = make_discussion(root, make_note("Fixed", note_id=2), make_note("Thanks", note_id=3))

        DiscussionMigrator(ctx).migrate(make_mr(), pr, discussion)

        kwargs = ctx.gateway.create_review_comment.call_args.kwargs
        assert kwargs["commit_sha"] == "feedbeef"
        assert kwargs["path"] == "lib/calc.py"
        assert kwargs["line"] == 12
        assert kwargs["start_line"] == 10
        assert kwargs["side"] == "RIGHT"
        assert kwargs["body"].startswith("Off by one?\nby `Bob (bob)`")
        replies = ctx.gateway.create_review_comment_reply.call_args_list
        assert [c.args[1] for c in replies] == [555, 555]
        assert replies[0].args[2].startswith("Fixed\nby")
        ctx.gateway.create_issue_comment.assert_not_called()

    def test_comment_on_removed_lines_goes_to_left_side(self, ctx: MigrationContext) -> None:
        ctx.gateway.create_review_comment.return_value = Mock(id=556)
        root = make_note("Why drop this?", position=make_position("lib/calc.py", start=(20, 0), end=(22, 0)))

        DiscussionMigrator(ctx).migrate(make_mr(), make_pr(), make_discussion(root))

        kwargs = ctx.gateway.create_review_comment.call_args.kwargs
        assert kwargs["line"] == 22
        assert kwargs["start_line"] == 20
        assert kwargs["side"] == "LEFT"
        ctx.gateway.create_issue_comment.assert_not_called()

    def test_rejected_review_comment_falls_back_to_flat(self, ctx: MigrationContext) -> None:
        pr = make_pr()
        ctx.gateway.create_review_comment.side_effect = ApiError("create review comment", "line not in diff")
        root = make_note("Off by one?", position=make_position(new_line=40))
        discussion = make_discussion(
            root,
            make_note("Fixed", note_id=2, resolved=True),
            make_note("added 1 commit", note_id=3, system=True),
            make_note("Thanks", note_id=4),
        )

        DiscussionMigrator(ctx).migrate(make_mr(), pr, discussion)

        ctx.gateway.create_review_comment_reply.assert_not_called()
        comments = [c.args[1] for c in ctx.gateway.create_issue_comment.call_args_list]
        assert len(comments) == 2
        assert comments[0].startswith("Off by one?\nby")
        merged = comments[1]
        assert merged.startswith("<details><summary>Resolved</summary>")
        assert merged.count(REPLY_SEPARATOR) == 2
        assert merged.endswith(REPLY_SEPARATOR)
        assert "Thanks\nby" in merged
        assert "added 1 commit" not in merged

    def test_flat_discussion(self, ctx: MigrationContext) -> None:
        pr = make_pr()
        discussion = make_discussion(make_note("General remark"), individual=True)

        DiscussionMigrator(ctx).migrate(make_mr(), pr, discussion)

        ctx.gateway.create_review_comment.assert_not_called()
        ctx.gateway.create_issue_comment.assert_called_once()
        assert ctx.gateway.create_issue_comment.call_args.args[1].startswith("General remark\nby")

    def test_commit_mention(self, ctx: MigrationContext) -> None:
        pr = make_pr(title="GL#1 Change number 1")
        discussion = make_discussion(make_note(f"mentioned in commit {SHA}", system=True))

        DiscussionMigrator(ctx).migrate(make_mr(), pr, discussion)

        ctx.gateway.create_commit_comment.assert_called_once_with(
            SHA, f"Related PR: [GL#1 Change number 1]({pr.html_url})"
        )
        ctx.gateway.create_issue_comment.assert_not_called()

    def test_commit_mention_falls_back_to_pr_comment(self, ctx: MigrationContext) -> None:
        pr = make_pr(title="GL#1 Change number 1")
        ctx.gateway.create_commit_comment.side_effect = ApiError("create comment on commit", "No commit found")
        discussion = make_discussion(make_note(f"mentioned in commit {SHA}", system=True))

        DiscussionMigrator(ctx).migrate(make_mr(), pr, discussion)

        ctx.gateway.create_issue_comment.assert_called_once_with(
            pr, f"Related PR: [GL#1 Change number 1]({pr.html_url})"
        )

    def test_noise_posts_nothing(self, ctx: MigrationContext) -> None:
        discussion = make_discussion(make_note("assigned to @bob", system=True))

        DiscussionMigrator(ctx).migrate(make_mr(), make_pr(), discussion)

        assert ctx.gateway.method_calls == []

    def test_system_note_prefixed(self, ctx: MigrationContext) -> None:
        pr = make_pr()
        discussion = make_discussion(make_note("changed target branch from `dev` to `main`", system=True))

        DiscussionMigrator(ctx).migrate(make_mr(), pr, discussion)

        ctx.gateway.create_issue_comment.assert_called_once_with(
            pr, f"{SYSTEM_PREFIX}changed target branch from `dev` to `main`"
        )

    def test_migrate_all_skips_failing_discussion(
        self, ctx: MigrationContext, caplog: pytest.LogCaptureFixture
    ) -> None:
        ctx.options.max_discussions = 10
        ctx.source.list_discussions.return_value = [
            make_discussion(make_note("first"), discussion_id="d1"),
            make_discussion(make_note("second"), discussion_id="d2"),
            make_discussion(make_note("third"), discussion_id="d3"),
        ]
        ctx.gateway.create_issue_comment.side_effect = [None, ApiError("create comment", "boom"), None]

        with caplog.at_level(logging.WARNING):
            failed = DiscussionMigrator(ctx).migrate_all(make_mr(4), make_pr())

        assert failed == 1
        assert ctx.gateway.create_issue_comment.call_count == 3
        ctx.source.list_discussions.assert_called_once_with(4, 10)
        assert "Failed to migrate discussion d2 of MR !4" in caplog.text

    def test_migrate_all_without_discussions(self, ctx: MigrationContext) -> None:
        ctx.source.list_discussions.side_effect = MigrationError("forbidden")

        assert DiscussionMigrator(ctx).migrate_all(make_mr(4), make_pr()) == 0
        ctx.gateway.create_issue_comment.assert_not_called()
