"""Deferred merge queue consumed by the config-combination step."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, List

from ..models import MergeQueueEntry, Role


class MergeQueue:
    """FIFO of files that need cross-project combination; reset every merge pass."""

    def __init__(self) -> None:
        self._entries: List[MergeQueueEntry] = []

    def add(self, path: Path | str, role: Role = Role.MERGE) -> MergeQueueEntry:
        if role not in (Role.MERGE, Role.LOCK):
            raise ValueError(f"Only merge and lock files can be queued, got {role.value}")
        entry = MergeQueueEntry(path=Path(path).resolve(), role=role)
        self._entries.append(entry)
        return entry

    def clear(self) -> None:
        self._entries.clear()

    @property
    def entries(self) -> tuple[MergeQueueEntry, ...]:
        return tuple(self._entries)

    def paths(self) -> List[Path]:
        return [entry.path for entry in self._entries]

    def __iter__(self) -> Iterator[MergeQueueEntry]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["MergeQueue"]
