"""Git repository operations using git CLI.

Two things happen on disk:

- :func:`mirror_repository` copies all branches and tags from GitLab to GitHub
  through a temporary mirror clone.
- :class:`WorkingCopy` is a clone of the GitHub repository with GitLab added
  as the ``gitlab`` remote. The per merge request branches are built and
  pushed from here, one after the other.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Final

from .exceptions import GitCommandError, MigrationError, RefNotFoundError

logger: logging.Logger = logging.getLogger(__name__)

SOURCE_REMOTE: Final[str] = "gitlab"

# What git answers when asked for a commit the server will not hand out
_REF_NOT_FOUND_SIGNATURE: Final[str] = "not our ref"


def _inject_token(url: str, token: str | None, prefix: str = "") -> str:
    """Inject authentication token into HTTPS URL.

    Args:
        url: The URL to modify
        token: Token to inject (if None, returns original URL)
        prefix: Prefix before token (e.g., "oauth2:" for GitLab)

    Returns:
        URL with token injected, or original if not HTTPS or no token
    """
    if not token or not url.startswith("https://"):
        return url
    return url.replace("https://", f"https://{prefix}{token}@", 1)


def _sanitize_error(error: str, tokens: list[str | None]) -> str:
    """Remove tokens from error message to prevent leakage."""
    result = error
    for token in tokens:
        if token:
            result = result.replace(token, "***TOKEN***")
    return result


def cleanup_git_clone(clone_path: str | Path) -> None:
    """Remove a clone directory, logging instead of failing."""
    if clone_path and Path(clone_path).exists():
        try:
            shutil.rmtree(clone_path)
            logger.debug(f"Cleaned up git clone at {clone_path}")
        except OSError as e:
            logger.warning(f"Failed to clean up git clone at {clone_path}: {e}")


def mirror_repository(
    source_http_url: str,
    target_clone_url: str,
    source_token: str | None,
    target_token: str | None,
) -> None:
    """Copy all branches and tags from the source repository to the target.

    GitLab's hidden ``refs/merge-requests/*`` are not pushed, GitHub would
    keep them as stray refs.

    Raises:
        MigrationError: If cloning or pushing fails
    """
    tokens = [source_token, target_token]
    temp_clone_path = tempfile.mkdtemp(prefix="gitlab_mr_migration_")

    try:
        source_url = _inject_token(source_http_url, source_token, prefix="oauth2:")
        result = subprocess.run(  # noqa: S603
            ["git", "clone", "--mirror", source_url, temp_clone_path],
            check=False,
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            msg = f"Failed to clone repository: {_sanitize_error(result.stderr, tokens)}"
            raise MigrationError(msg)

        target_url = _inject_token(target_clone_url, target_token)
        for refspec in ("refs/heads/*:refs/heads/*", "refs/tags/*:refs/tags/*"):
            result = subprocess.run(  # noqa: S603
                ["git", "push", "--force", target_url, refspec],
                cwd=temp_clone_path,
                check=False,
                capture_output=True,
                text=True,
            )
            if result.returncode != 0:
                msg = f"Failed to push {refspec.split(':')[0]}: {_sanitize_error(result.stderr, tokens)}"
                raise MigrationError(msg)

        logger.info("Repository content mirrored successfully")

    except OSError as e:
        msg = f"Failed to mirror repository content: {_sanitize_error(str(e), tokens)}"
        raise MigrationError(msg) from e
    finally:
        cleanup_git_clone(temp_clone_path)


class WorkingCopy:
    """Local clone of the destination repository with the source as a second remote.

    Only one migration may use a working copy at a time: every branch
    operation checks files out into the same directory.
    """

    def __init__(self, path: str | Path, *, source_token: str | None = None, target_token: str | None = None) -> None:
        self.path: Path = Path(path)
        self._source_token: str | None = source_token
        self._target_token: str | None = target_token
        self._tokens: list[str | None] = [source_token, target_token]

    def _git(self, *args: str, cwd: Path | None = None, stdin: str | None = None) -> subprocess.CompletedProcess[str]:
        command = " ".join(args)
        logger.debug(f"Running git {_sanitize_error(command, self._tokens)}")
        try:
            result = subprocess.run(  # noqa: S603
                ["git", *args],
                cwd=cwd or self.path,
                input=stdin,
                check=False,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise GitCommandError(args[0], _sanitize_error(str(e), self._tokens)) from e
        if result.returncode != 0:
            stderr = _sanitize_error(result.stderr or result.stdout, self._tokens)
            raise GitCommandError(_sanitize_error(command, self._tokens), stderr)
        return result

    def prepare(self, target_clone_url: str, source_clone_url: str) -> None:
        """Start from a fresh clone of the target and fetch everything from the source.

        Merge request heads are fetched too, so that branches of unmerged
        merge requests can still be rebuilt.
        """
        cleanup_git_clone(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        target_url = _inject_token(target_clone_url, self._target_token)
        source_url = _inject_token(source_clone_url, self._source_token, prefix="oauth2:")
        self._git("clone", target_url, str(self.path), cwd=self.path.parent)
        self._git("config", "user.name", "gitlab-mr-migrator")
        self._git("config", "user.email", "gitlab-mr-migrator@users.noreply.github.com")
        self._git("remote", "add", SOURCE_REMOTE, source_url)
        self._git(
            "fetch",
            SOURCE_REMOTE,
            "--prune",
            "--tags",
            f"+refs/heads/*:refs/remotes/{SOURCE_REMOTE}/*",
            f"+refs/merge-requests/*/head:refs/remotes/{SOURCE_REMOTE}/merge-requests/*",
        )
        logger.info(f"Prepared working copy at {self.path}")

    def fetch_commit(self, sha: str) -> None:
        """Fetch a single commit from the source.

        Raises:
            RefNotFoundError: The source no longer serves this commit
            GitCommandError: Any other fetch failure
        """
        try:
            self._git("fetch", SOURCE_REMOTE, sha)
        except GitCommandError as e:
            if _REF_NOT_FOUND_SIGNATURE in e.stderr:
                raise RefNotFoundError(e.command, e.stderr) from e
            raise

    def create_branch(self, branch: str, ref: str | None = None) -> None:
        """Check out ``branch`` at ``ref``, or at the current checkout when ``ref`` is None.

        An existing branch of that name is reset. A commit unknown locally is
        fetched from the source first.
        """
        if ref is None:
            self._git("checkout", "-B", branch)
            return
        try:
            self._git("checkout", "-B", branch, ref)
        except GitCommandError:
            logger.debug(f"Commit {ref} not available locally, fetching it from {SOURCE_REMOTE}")
            self.fetch_commit(ref)
            self._git("checkout", "-B", branch, ref)

    def create_root_branch(self, branch: str, message: str) -> None:
        """Point ``branch`` at a new parentless commit with an empty tree.

        Uses plumbing only, the checkout is left untouched.
        """
        empty_tree = self._git("hash-object", "-t", "tree", "-w", "--stdin", stdin="").stdout.strip()
        commit = self._git("commit-tree", empty_tree, "-m", message).stdout.strip()
        self._git("update-ref", f"refs/heads/{branch}", commit)

    def commit_empty(self, message: str) -> None:
        self._git("commit", "--allow-empty", "-m", message)

    def push_branches(self, *branches: str) -> None:
        """Force-push the given branches to the destination in one push."""
        self._git("push", "--force", "origin", *branches)
