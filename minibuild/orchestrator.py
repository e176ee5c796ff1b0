"""Build pipeline orchestration for one-shot and watch builds."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, MutableMapping, NoReturn, Optional

from .compilers import CompileCallback, CompilerFactory, Watching, webpack_cli_factory
from .config import MiniBuildConfig, load_config
from .h5 import H5PostProcessor
from .logging import get_logger
from .models import BuildContext, CompileStats
from .options import (
    H5_PLATFORM,
    SUPPORTED_PLATFORMS,
    BuildOptions,
    PreBuildOptions,
    build_compiler_config,
)
from .reporting import BuildLog, Reporter, exit_process, is_hosted_environment
from .routes import QUICK_PLATFORM, RouteDiscovery, webview_flag
from .tasks import PreBuildTasks, run_prebuild_tasks

ENV_PLATFORM_VAR = "ANU_ENV"
ENV_WEBVIEW_VAR = "ANU_WEBVIEW"


class ValidationError(ValueError):
    """Raised when build options are rejected before any side effect."""


class BuildState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PREPARING_CONTEXT = "preparing-context"
    PREBUILD_TASKS = "prebuild-tasks"
    COMPILING = "compiling"
    WATCHING = "watching"
    COMPLETED = "completed"
    REPORTING = "reporting"
    FAILED = "failed"


@dataclass
class BuildSession:
    """State owned by a single build invocation."""

    options: BuildOptions
    cwd: Path
    log: BuildLog = field(default_factory=BuildLog)
    state: BuildState = BuildState.IDLE
    context: Optional[BuildContext] = None
    cycles: int = 0
    watching: Optional[Watching] = None
    h5: Optional[H5PostProcessor] = None
    last_stats: Optional[CompileStats] = None

    def close(self) -> None:
        """Stop watchers and the H5 dev server started by this session."""
        if self.watching is not None:
            self.watching.close()
            self.watching = None
        if self.h5 is not None and self.h5.dev_server is not None:
            self.h5.dev_server.stop()


class Orchestrator:
    """Validates options, prepares the build context and drives the compiler.

    Invocations must not overlap: each :meth:`build` call constructs its own
    :class:`BuildContext` and hands it down explicitly, but environment
    markers are process-wide.
    """

    def __init__(
        self,
        compiler_factory: CompilerFactory | None = None,
        *,
        prebuild_tasks: PreBuildTasks | None = None,
        route_discovery: RouteDiscovery | None = None,
        config: MiniBuildConfig | None = None,
        environ: MutableMapping[str, str] | None = None,
        exit: Callable[[int], NoReturn] = exit_process,
        h5_processor_factory: Callable[..., H5PostProcessor] = H5PostProcessor,
        watch_options: Dict[str, Any] | None = None,
    ) -> None:
        self._compiler_factory = compiler_factory
        self.prebuild_tasks = prebuild_tasks or run_prebuild_tasks
        self._route_discovery = route_discovery
        self._config = config
        self.environ = environ if environ is not None else os.environ
        self._exit = exit
        self.h5_processor_factory = h5_processor_factory
        self.watch_options = dict(watch_options or {})
        self.logger = get_logger("orchestrator")

    @property
    def route_discovery(self) -> RouteDiscovery:
        if self._route_discovery is None:
            self._route_discovery = RouteDiscovery()
        return self._route_discovery

    def run(self, options: BuildOptions, cwd: Path | str | None = None) -> BuildSession:
        """Synchronous wrapper around :meth:`build`."""
        return asyncio.run(self.build(options, cwd))

    async def build(self, options: BuildOptions, cwd: Path | str | None = None) -> BuildSession:
        """Run the pipeline; returns once the compiler has been started or finished."""
        root = Path(cwd or os.getcwd()).expanduser().resolve()
        session = BuildSession(options=options, cwd=root)
        self.logger.info(
            "Starting %s build for %s (%s)",
            options.platform,
            root,
            "watch" if options.watch else "one-shot",
        )
        try:
            session.state = BuildState.VALIDATING
            self.validate(options, root)

            session.state = BuildState.PREPARING_CONTEXT
            context = self.prepare_context(options, root)
            session.context = context
            config = self._resolve_config(root)

            session.state = BuildState.PREBUILD_TASKS
            await self.prebuild_tasks(
                PreBuildOptions(
                    platform=context.platform,
                    beta=options.beta,
                    beta_ui=options.beta_ui,
                    compress=context.compress,
                    cwd=root,
                    log=session.log,
                    config=config,
                )
            )

            session.state = BuildState.COMPILING
            factory = self._resolve_compiler_factory(config)
            compiler_config = build_compiler_config(options, context, cwd=root, log=session.log)
            compiler = factory(compiler_config)
        except Exception as exc:
            session.state = BuildState.FAILED
            self.logger.error("Build failed: %s", exc)
            raise

        hosted = options.hosted if options.hosted is not None else is_hosted_environment(self.environ)
        reporter = Reporter(silent=options.silent, hosted=hosted, exit=self._exit)
        if context.platform == H5_PLATFORM:
            session.h5 = self.h5_processor_factory(
                factory,
                reporter,
                cwd=root,
                output_dir=config.h5.output_dir,
                dev_host=config.h5.dev_host,
                dev_port=config.h5.dev_port,
            )

        # Compiler calls block on the external process; keep them off the loop.
        loop = asyncio.get_running_loop()
        callback = self._make_callback(session, reporter)
        if options.watch:
            session.watching = await loop.run_in_executor(
                None, compiler.watch, self.watch_options, callback
            )
            session.state = BuildState.WATCHING
        else:
            await loop.run_in_executor(None, compiler.run, callback)
            session.state = BuildState.COMPLETED
        return session

    def validate(self, options: BuildOptions, cwd: Path) -> None:
        if options.platform not in SUPPORTED_PLATFORMS:
            supported = ", ".join(SUPPORTED_PLATFORMS)
            raise ValidationError(f"Unsupported platform: {options.platform} (expected one of {supported})")
        if options.watch and options.legacy_web_shell:
            raise ValidationError("The legacy web shell only supports one-shot builds; drop --watch")
        if (cwd / "source" / "app.tsx").exists() and not options.typescript:
            raise ValidationError("Found source/app.tsx; build it with typescript enabled (-t/--typescript)")

    def prepare_context(self, options: BuildOptions, cwd: Path) -> BuildContext:
        """Discover webview routes, then construct the invocation's build context."""
        rules = self.route_discovery.discover(cwd, options.platform)
        context = BuildContext(
            platform=options.platform,
            compress=options.compress,
            typescript=options.typescript,
            huawei=options.huawei if options.platform == QUICK_PLATFORM else False,
            legacy_web_shell=options.legacy_web_shell,
            webview=rules,
        )
        self.environ[ENV_PLATFORM_VAR] = "web" if options.platform == H5_PLATFORM else options.platform
        if options.platform == QUICK_PLATFORM:
            self.environ[ENV_WEBVIEW_VAR] = webview_flag(rules)
        else:
            self.environ.pop(ENV_WEBVIEW_VAR, None)
        return context

    def _make_callback(self, session: BuildSession, reporter: Reporter) -> CompileCallback:
        def _callback(error: Optional[BaseException], stats: Optional[CompileStats]) -> None:
            session.state = BuildState.REPORTING
            session.cycles += 1
            session.last_stats = stats
            try:
                self._report_cycle(session, reporter, error, stats)
            except Exception:
                session.options.complete(error, stats)
                raise
            session.options.complete(error, stats)
            session.state = BuildState.WATCHING if session.options.watch else BuildState.COMPLETED

        return _callback

    def _report_cycle(
        self,
        session: BuildSession,
        reporter: Reporter,
        error: Optional[BaseException],
        stats: Optional[CompileStats],
    ) -> None:
        reporter.report_log(session.log)
        if error is not None:
            self.logger.error("Compiler failed: %s", error)
            return
        if stats is not None:
            reporter.report_stats(stats)
        if session.h5 is not None and session.context is not None:
            session.h5.process(session.context, watch=session.options.watch, log=session.log)

    def _resolve_config(self, root: Path) -> MiniBuildConfig:
        if self._config is not None:
            return self._config
        return load_config(root)

    def _resolve_compiler_factory(self, config: MiniBuildConfig) -> CompilerFactory:
        if self._compiler_factory is not None:
            return self._compiler_factory
        return webpack_cli_factory(
            config.compiler.command,
            cache_root=config.cache_root,
            ignored_paths=[config.cache_root, config.root / config.h5.output_dir],
        )


__all__ = ["BuildSession", "BuildState", "ENV_PLATFORM_VAR", "ENV_WEBVIEW_VAR", "Orchestrator", "ValidationError"]
