"""Version information of the driver."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

log = logging.getLogger(__name__)

# Filled in at build time; empty means "look it up".
GIT_COMMIT = ""
VERSION = ""
# Pre-release marker such as "dev", "beta" or "rc1"; empty for a final release.
VERSION_META = ""

SOURCE_ROOT_ENV = "LVMPV_SOURCE_ROOT"
_VERSION_FILE = "VERSION"
_BUILD_META_FILE = "BUILDMETA"
_SHORT_COMMIT = 7


def _read_source_file(name: str) -> str:
    root = Path(os.environ.get(SOURCE_ROOT_ENV, ""))
    return (root / name).read_text().strip()


def current() -> str:
    """Return the current version of the driver."""
    return get()


def get() -> str:
    """Return VERSION, or the contents of the VERSION file when it is unset."""
    if VERSION:
        return VERSION
    try:
        return _read_source_file(_VERSION_FILE)
    except OSError as exc:
        log.error("failed to get version: %s", exc)
        return ""


def get_build_meta() -> str:
    """Return the build marker prefixed with '-', or '' when it cannot be read."""
    if VERSION_META:
        return "-" + VERSION_META
    try:
        return "-" + _read_source_file(_BUILD_META_FILE)
    except OSError as exc:
        log.error("failed to get build version: %s", exc)
        return ""


def get_git_commit() -> str:
    """Return GIT_COMMIT, or ask git for the HEAD commit when it is unset."""
    if GIT_COMMIT:
        return GIT_COMMIT
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--verify", "HEAD"],
            capture_output=True,
            check=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        log.error("failed to get git commit: %s", exc)
        return ""
    return result.stdout.strip()


def _short_commit() -> str:
    commit = get_git_commit()
    if len(commit) < _SHORT_COMMIT:
        raise ValueError(
            f"git commit {commit!r} is shorter than {_SHORT_COMMIT} characters"
        )
    return commit[:_SHORT_COMMIT]


def verbose() -> str:
    """Return '<version>-<short commit>'."""
    return "-".join([get(), _short_commit()])


def version_details() -> str:
    """Return 'lvm-<version>-<short commit>'."""
    return "lvm-" + verbose()