"""Multi-project merge: classification, staging and recombination."""

from __future__ import annotations

from .classifier import build_record, classify
from .engine import CollisionPolicy, MergeConflictError, MergeEngine, MergeResult, merge_projects
from .queue import MergeQueue

__all__ = [
    "CollisionPolicy",
    "MergeConflictError",
    "MergeEngine",
    "MergeQueue",
    "MergeResult",
    "build_record",
    "classify",
    "merge_projects",
]
