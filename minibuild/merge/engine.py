"""Stage and recombine multiple mini-app projects into one merged tree."""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..logging import get_logger
from ..models import FileRecord, Role
from .classifier import build_record
from .queue import MergeQueue

DOWNLOAD_DIRNAME = "download"
MERGED_DIRNAME = "merged"
SOURCE_DIRNAME = "source"

# Top-level entries of the working project that never take part in a merge.
_STAGE_EXCLUDES = {
    "node_modules",
    "dist",
    "src",
    "sign",
    "build",
    ".CACHE",
    ".chaika_cache",
    "nanachi",
}


class CollisionPolicy(str, Enum):
    """What to do when two staged files map to the same merged path."""

    OVERWRITE = "overwrite"
    KEEP_FIRST = "keep-first"
    ERROR = "error"


class MergeConflictError(RuntimeError):
    """Raised when flattening produces a collision under the ``error`` policy."""


@dataclass
class MergeResult:
    """Summary of a merge pass."""

    merge_dir: Path
    staged_project: Optional[str]
    copied: List[Path]
    queue: MergeQueue
    collisions: List[Tuple[Path, Path, Path]] = field(default_factory=list)


def _copy_file(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dest)


def _copy_tree(src: Path, dest: Path) -> None:
    shutil.copytree(src, dest, dirs_exist_ok=True)


class MergeEngine:
    """Copies the working project next to downloaded projects and merges them.

    Layout under ``cache_root``::

        download/<project>/...   raw staging, one slot per project
        merged/...               merged tree handed to the compiler

    Copies inside a phase run concurrently, bounded by ``max_concurrency``
    (``None`` or ``0`` leaves the fan-out unbounded). The first failing copy
    aborts the phase; copies already in flight are left to finish.
    """

    def __init__(
        self,
        cwd: Path | str,
        *,
        cache_root: Path | str | None = None,
        queue: MergeQueue | None = None,
        max_concurrency: Optional[int] = 32,
        collision: CollisionPolicy | str = CollisionPolicy.OVERWRITE,
    ) -> None:
        self.cwd = Path(cwd).expanduser().resolve()
        self.cache_root = (
            Path(cache_root).expanduser().resolve() if cache_root else self.cwd / ".CACHE"
        )
        self.download_dir = self.cache_root / DOWNLOAD_DIRNAME
        self.merge_dir = self.cache_root / MERGED_DIRNAME
        self.queue = queue if queue is not None else MergeQueue()
        if max_concurrency is not None and max_concurrency < 0:
            raise ValueError("max_concurrency must not be negative")
        self.max_concurrency = max_concurrency or None
        self.collision = CollisionPolicy(collision)
        self.logger = get_logger("merge")
        self._collisions: List[Tuple[Path, Path, Path]] = []

    async def run(self) -> MergeResult:
        """Clear the merged tree, stage the working project, then recombine."""
        self._clear_merge_dir()
        self._collisions = []
        self.queue.clear()
        staged = await self.stage_current_project()
        copied = await self.recombine()
        self.logger.info(
            "Merged %d files into %s (%d deferred to merge queue)",
            len(copied),
            self.merge_dir,
            len(self.queue),
        )
        return MergeResult(
            merge_dir=self.merge_dir,
            staged_project=staged,
            copied=copied,
            queue=self.queue,
            collisions=list(self._collisions),
        )

    def is_project(self) -> bool:
        return (self.cwd / SOURCE_DIRNAME).exists() or (self.cwd / "app.js").exists()

    async def stage_current_project(self) -> Optional[str]:
        """Copy the working project into its staging slot; return the slot name."""
        if not self.is_project():
            self.logger.debug("%s has no source/ or app.js; nothing to stage", self.cwd)
            return None

        project = self.cwd.name
        slot = self.download_dir / project
        if slot.exists():
            shutil.rmtree(slot)

        excluded = set(_STAGE_EXCLUDES)
        if self.cache_root.parent == self.cwd:
            excluded.add(self.cache_root.name)

        jobs: List[Callable[[], None]] = []
        for entry in sorted(self.cwd.iterdir()):
            if entry.name in excluded or entry.name.startswith("."):
                continue
            dest = slot / entry.name
            if entry.is_dir():
                jobs.append(partial(_copy_tree, entry, dest))
            else:
                jobs.append(partial(_copy_file, entry, dest))

        self.logger.debug("Staging %d entries of %s into %s", len(jobs), project, slot)
        await self._run_all(jobs)
        return project

    async def recombine(self) -> List[Path]:
        """Classify every staged file and copy pass-through files into the merged tree."""
        plan: Dict[Path, Path] = {}
        for record, relative in self._iter_staged():
            if record.role is Role.IGNORE:
                continue
            if record.role in (Role.MERGE, Role.LOCK):
                self.queue.add(record.path, record.role)
                continue
            dest = self.destination_for(relative)
            previous = plan.get(dest)
            if previous is None:
                plan[dest] = record.path
            else:
                plan[dest] = self._resolve_collision(dest, previous, record.path)

        jobs = [partial(_copy_file, src, dest) for dest, src in plan.items()]
        await self._run_all(jobs)
        return sorted(plan)

    def destination_for(self, relative: Path) -> Path:
        """Map a path relative to the staging root onto the merged tree."""
        parts = relative.parts[1:] or relative.parts
        directories = parts[:-1]
        if SOURCE_DIRNAME in directories:
            # The tail after the innermost source directory is kept.
            index = len(directories) - 1 - directories[::-1].index(SOURCE_DIRNAME)
            return self.merge_dir.joinpath(SOURCE_DIRNAME, *parts[index + 1 :])
        return self.merge_dir / parts[-1]

    def _iter_staged(self) -> List[Tuple[FileRecord, Path]]:
        if not self.download_dir.is_dir():
            return []
        staged: List[Tuple[FileRecord, Path]] = []
        for path in sorted(self.download_dir.rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(self.download_dir)
            project = relative.parts[0] if len(relative.parts) > 1 else ""
            staged.append((build_record(path, project), relative))
        return staged

    def _resolve_collision(self, dest: Path, previous: Path, incoming: Path) -> Path:
        self._collisions.append((dest, previous, incoming))
        if self.collision is CollisionPolicy.ERROR:
            raise MergeConflictError(
                f"{previous} and {incoming} both merge to {dest.relative_to(self.merge_dir)}"
            )
        if self.collision is CollisionPolicy.KEEP_FIRST:
            self.logger.warning("Keeping %s; skipping %s for %s", previous, incoming, dest)
            return previous
        self.logger.warning("%s overwrites %s at %s", incoming, previous, dest)
        return incoming

    def _clear_merge_dir(self) -> None:
        if self.merge_dir.exists():
            shutil.rmtree(self.merge_dir)
        self.merge_dir.mkdir(parents=True, exist_ok=True)

    async def _run_all(self, jobs: Sequence[Callable[[], None]]) -> None:
        if not jobs:
            return
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        async def _run(job: Callable[[], None]) -> None:
            if semaphore is None:
                await loop.run_in_executor(None, job)
                return
            async with semaphore:
                await loop.run_in_executor(None, job)

        await asyncio.gather(*(_run(job) for job in jobs))


async def merge_projects(
    cwd: Path | str,
    *,
    cache_root: Path | str | None = None,
    queue: MergeQueue | None = None,
    max_concurrency: Optional[int] = 32,
    collision: CollisionPolicy | str = CollisionPolicy.OVERWRITE,
) -> MergeResult:
    """Run a full merge pass for ``cwd``."""
    engine = MergeEngine(
        cwd,
        cache_root=cache_root,
        queue=queue,
        max_concurrency=max_concurrency,
        collision=collision,
    )
    return await engine.run()


__all__ = [
    "CollisionPolicy",
    "MergeConflictError",
    "MergeEngine",
    "MergeResult",
    "merge_projects",
]
