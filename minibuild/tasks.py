"""Pre-build task set run before the compiler is constructed."""

from __future__ import annotations

from typing import Awaitable, Callable

from .logging import get_logger
from .merge import merge_projects
from .options import PreBuildOptions

PreBuildTasks = Callable[[PreBuildOptions], Awaitable[None]]

logger = get_logger("tasks")


async def run_prebuild_tasks(options: PreBuildOptions) -> None:
    """Merge downloaded sub-projects into the build tree when enabled in config."""
    config = options.config
    if config is None or not config.merge.enabled:
        return

    result = await merge_projects(
        options.cwd,
        cache_root=config.cache_root,
        max_concurrency=config.merge.max_concurrency,
        collision=config.merge.collision,
    )
    options.log.info(
        f"Merged {len(result.copied)} files into {result.merge_dir}; "
        f"{len(result.queue)} files queued for combination"
    )
    for dest, _, incoming in result.collisions:
        options.log.warning(f"{incoming} collided at {dest}")
    logger.debug("Merge queue: %s", ", ".join(str(path) for path in result.queue.paths()))


__all__ = ["PreBuildTasks", "run_prebuild_tasks"]
