"""
Utility functions for the GitLab merge request migration tool.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import re
import subprocess
from subprocess import CompletedProcess
from typing import Final

# GitHub limits, in characters
MAX_PR_TITLE_LENGTH: Final[int] = 256
MAX_PR_BODY_LENGTH: Final[int] = 65536
MAX_COMMENT_LENGTH: Final[int] = 65536

TRUNCATE_SUFFIX: Final[str] = "... [truncated]"


class PassError(Exception):
    """Base class for pass-related errors."""


class InvalidPassPathError(PassError):
    """Raised when the pass path format is invalid."""


class PassphraseRequiredError(PassError):
    """Raised when a GPG passphrase is required for the pass utility."""


def setup_logging(*, verbose: bool = False) -> None:
    """Configure logging for the migration process."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(), logging.FileHandler("migration.log", mode="a")],
    )


def truncate_text(text: str, max_length: int) -> str:
    """Shorten text to at most max_length characters, marking the cut.

    If the limit is too small to hold the suffix, the text is cut hard.
    """
    if len(text) <= max_length:
        return text
    available = max_length - len(TRUNCATE_SUFFIX)
    if available <= 0:
        return text[:max_length]
    return text[:available] + TRUNCATE_SUFFIX


def wrap_as_resolved(body: str) -> str:
    """Collapse a comment body, GitHub's REST API has no "resolved" state for it."""
    inner = truncate_text(body, MAX_COMMENT_LENGTH - 64)
    return f"<details><summary>Resolved</summary>\n\n{inner}\n</details>"


def format_datetime(value: dt.datetime | None) -> str:
    """Format a timestamp as e.g. ``2024-01-15 10:30:45 UTC``; empty when unknown."""
    if value is None:
        return ""
    return value.strftime("%Y-%m-%d %H:%M:%S %Z").rstrip()


def _validate_pass_path(pass_path: str) -> None:
    """Validate the pass path format."""
    if not re.fullmatch(r"(?:[A-Za-z0-9_-]+)(?:/[A-Za-z0-9_-]+)*", pass_path):
        msg = f"Invalid pass path: {pass_path}"
        raise ValueError(msg)


def get_pass_value(pass_path: str) -> str:
    """Get value from pass utility at specified path."""
    _validate_pass_path(pass_path)

    try:
        result: CompletedProcess[str] = subprocess.run(  # noqa: S603
            ["pass", pass_path], capture_output=True, text=True, check=True
        )
    except FileNotFoundError as e:
        msg = "The 'pass' utility is not installed"
        raise PassError(msg) from e
    except subprocess.CalledProcessError as e:
        if e.returncode == 1 and "not in the password store" in e.stderr.lower():
            msg = f"Pass path '{pass_path}' not found or invalid."
            raise InvalidPassPathError(msg) from e
        if e.returncode == 2 and "public key decryption failed" in e.stderr.lower():
            # Most likely the GPG key needs its passphrase; this only works interactively.
            try:
                passphrase = input("Enter passphrase for GPG key used by pass: ")
            except EOFError as eof:
                msg = "Passphrase input was interrupted. Please run the command in an interactive session."
                raise PassphraseRequiredError(msg) from eof

            env = os.environ.copy() | {"PASSWORD_STORE_GPG_OPTS": "--pinentry-mode=loopback --passphrase-fd 0"}
            try:
                result = subprocess.run(  # noqa: S603
                    ["pass", pass_path], input=passphrase, capture_output=True, text=True, check=True, env=env
                )
            except subprocess.CalledProcessError as retry_error:
                msg = f"Failed to get value from pass at '{pass_path}' with passphrase: {retry_error.stderr.strip()}"
                raise PassphraseRequiredError(msg) from retry_error
            return result.stdout.strip()
        msg = (
            f"Failed to get value from pass at '{pass_path}'.\n"
            f"Error: {e.stderr.strip()}\n"
            f"Return code: {e.returncode}"
        )
        raise PassError(msg) from e

    return result.stdout.strip()
