"""Name-based file classification for the multi-project merge."""

from __future__ import annotations

import re
from pathlib import Path, PurePath

from ..models import FileRecord, Role

_IGNORED_FILES = {
    "package-lock.json",
}

_IGNORED_SUFFIXES = {
    ".tgz",
    ".log",
    ".rpks",
}

# Generated framework runtime files (ReactWX.js, ReactH5.js, ...) are rebuilt per target.
_FRAMEWORK_FILE_RE = re.compile(r"React\w+\.js$")
_DOC_FILE_RE = re.compile(r"\.md$")
_CONFIG_FILE_RE = re.compile(r"\w+Config\.json$")

_MERGE_FILES = {
    "app.json",
    "app.js",
    "package.json",
}

# At most one copy survives across all projects.
_LOCK_FILES = {
    "project.config.json",
}


def classify(name: str) -> Role:
    """Return the merge role for ``name``; only the basename is considered."""
    basename = PurePath(name).name
    suffix = PurePath(basename).suffix.lower()

    if (
        basename in _IGNORED_FILES
        or suffix in _IGNORED_SUFFIXES
        or _FRAMEWORK_FILE_RE.search(basename)
        or _DOC_FILE_RE.search(basename)
    ):
        return Role.IGNORE
    if basename in _MERGE_FILES or _CONFIG_FILE_RE.search(basename):
        return Role.MERGE
    if basename in _LOCK_FILES:
        return Role.LOCK
    return Role.PASS_THROUGH


def build_record(path: Path, project: str) -> FileRecord:
    """Return a classified record for a staged file."""
    return FileRecord(
        path=path,
        basename=path.name,
        extension=path.suffix,
        role=classify(path.name),
        project=project,
    )


__all__ = ["classify", "build_record"]
