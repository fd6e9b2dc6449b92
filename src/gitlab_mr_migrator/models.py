"""Data models exchanged between the GitLab source, the migration steps and GitHub.

Source records are built once per run from python-gitlab objects and are never
mutated afterwards, except for approval timestamps which are refined from the
merge request's state events.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Literal

MergeRequestState = Literal["opened", "closed", "merged", "locked"]


def parse_timestamp(value: str | None) -> dt.datetime | None:
    """Parse a GitLab ISO 8601 timestamp, returning None when absent or invalid."""
    if not value:
        return None
    try:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class Author:
    """A GitLab user as shown in attribution lines."""

    username: str
    name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Author:
        data = data or {}
        return cls(username=data.get("username") or "", name=data.get("name") or "")

    @property
    def display(self) -> str:
        if self.name:
            return f"{self.name} ({self.username})"
        return self.username


@dataclass
class Approval:
    """An approval given on a merge request.

    GitLab's approval state does not expose when an approval happened, so
    ``approved_at`` starts as the time of reading and is later replaced with
    the timestamp of the matching "approved" state event when there is one.
    """

    username: str
    approved_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.UTC))


@dataclass
class LinePosition:
    """One endpoint of a commented line range. Zero means "no line on this side"."""

    old_line: int = 0
    new_line: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LinePosition | None:
        if not data:
            return None
        return cls(old_line=data.get("old_line") or 0, new_line=data.get("new_line") or 0)


@dataclass
class NotePosition:
    """Diff anchor of a review note."""

    new_path: str
    old_path: str = ""
    start: LinePosition | None = None
    end: LinePosition | None = None
    old_line: int = 0
    new_line: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> NotePosition | None:
        if not data:
            return None
        line_range: dict[str, Any] = data.get("line_range") or {}
        return cls(
            new_path=data.get("new_path") or data.get("old_path") or "",
            old_path=data.get("old_path") or "",
            start=LinePosition.from_dict(line_range.get("start")),
            end=LinePosition.from_dict(line_range.get("end")),
            old_line=data.get("old_line") or 0,
            new_line=data.get("new_line") or 0,
        )

    @property
    def path(self) -> str:
        return self.new_path or self.old_path


@dataclass
class Note:
    """A single message inside a discussion."""

    id: int
    body: str
    author: Author
    created_at: dt.datetime | None = None
    system: bool = False
    resolved: bool = False
    position: NotePosition | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Note:
        return cls(
            id=data.get("id") or 0,
            body=data.get("body") or "",
            author=Author.from_dict(data.get("author")),
            created_at=parse_timestamp(data.get("created_at")),
            system=bool(data.get("system")),
            resolved=bool(data.get("resolved")),
            position=NotePosition.from_dict(data.get("position")),
        )


@dataclass
class Discussion:
    """An ordered thread of notes. The first note is the root."""

    id: str
    notes: list[Note]
    individual_note: bool = False

    @property
    def root(self) -> Note:
        return self.notes[0]

    @property
    def replies(self) -> list[Note]:
        return self.notes[1:]


@dataclass
class MergeRequest:
    """A GitLab merge request as needed for migration."""

    iid: int
    title: str
    state: MergeRequestState
    description: str = ""
    author: Author = field(default_factory=lambda: Author(username=""))
    web_url: str = ""
    created_at: dt.datetime | None = None
    base_sha: str = ""
    head_sha: str = ""
    squash_commit_sha: str = ""
    draft: bool = False

    @property
    def is_finalized(self) -> bool:
        return self.state in ("closed", "merged")

    @property
    def source_sha(self) -> str:
        """Commit the source branch is built from.

        A squash merge leaves the original head unreachable, so the squash
        commit is preferred when GitLab reports one.
        """
        return self.squash_commit_sha or self.head_sha


@dataclass
class BranchPair:
    """Destination branches created for one merge request."""

    source: str
    target: str
    synthetic: bool = False


@dataclass
class MigrationOptions:
    """User-selected restrictions on which merge requests are migrated."""

    mr_ids: list[int] = field(default_factory=list)
    continue_from: int = 0
    max_discussions: int = 0
    # Remove the helper branches from GitHub once the PR is closed
    delete_branches: bool = False


@dataclass
class MigrationStats:
    """Counters reported per page and at the end of a run."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    stale_closed: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "stale_closed": self.stale_closed,
        }
