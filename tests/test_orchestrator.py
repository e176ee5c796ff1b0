"""Tests for minibuild.orchestrator."""

from __future__ import annotations

import asyncio
import json
import subprocess
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from minibuild.compilers import WebpackCliCompiler
from minibuild.config import MiniBuildConfig
from minibuild.models import CompileStats, WebViewPage
from minibuild.options import COMPRESS_LOADER, BuildOptions, CompilerConfig, PreBuildOptions
from minibuild.orchestrator import (
    ENV_PLATFORM_VAR,
    ENV_WEBVIEW_VAR,
    BuildState,
    Orchestrator,
    ValidationError,
)
from minibuild.routes import WEBVIEW_SENTINEL, RouteDiscovery
from minibuild.routes.scanners import WebViewScanner

Outcome = Tuple[Optional[BaseException], Optional[CompileStats]]


class FakeWatching:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeCompiler:
    """Replays canned outcomes, queueing build-log entries before each cycle."""

    def __init__(self, config: CompilerConfig, outcomes: List[Outcome]) -> None:
        self.config = config
        self.outcomes = outcomes
        self.watch_options: Optional[Dict[str, Any]] = None

    def run(self, callback) -> None:
        self._cycle(0, callback)

    def watch(self, options, callback) -> FakeWatching:
        self.watch_options = dict(options)
        for index in range(len(self.outcomes)):
            self._cycle(index, callback)
        return FakeWatching()

    def _cycle(self, index: int, callback) -> None:
        self.config.log.info(f"cycle {index}: compiled")
        self.config.log.warning(f"cycle {index}: warning")
        error, stats = self.outcomes[index]
        callback(error, stats)


class FakeCompilerFactory:
    def __init__(self, outcomes: List[Outcome] | None = None) -> None:
        self.outcomes = outcomes or [(None, CompileStats(hash="0123456789abcdef"))]
        self.compilers: List[FakeCompiler] = []

    def __call__(self, config: CompilerConfig) -> FakeCompiler:
        compiler = FakeCompiler(config, self.outcomes)
        self.compilers.append(compiler)
        return compiler


class StaticScanner(WebViewScanner):
    def __init__(self, routes: List[Path]) -> None:
        self.routes = routes

    def scan(self, pages_dir: Path) -> List[Path]:
        return list(self.routes)


class StaticExtractor:
    def extract(self, path: Path) -> Optional[WebViewPage]:
        return WebViewPage(path=path, pages=True)


class RecordingH5:
    instances: List["RecordingH5"] = []

    def __init__(self, compiler_factory, reporter, *, cwd, output_dir, dev_host, dev_port, events=None) -> None:
        self.calls: List[Tuple[str, bool]] = []
        self.dev_server = None
        self.events = events
        RecordingH5.instances.append(self)

    def process(self, context, *, watch: bool, log) -> None:
        self.calls.append((context.platform, watch))
        if self.events is not None:
            self.events.append("h5")


class Recorder:
    def __init__(self) -> None:
        self.completions: List[Outcome] = []
        self.prebuild: List[PreBuildOptions] = []
        self.events: List[str] = []

    def complete(self, error, stats) -> None:
        self.completions.append((error, stats))
        self.events.append("complete")

    async def prebuild_tasks(self, options: PreBuildOptions) -> None:
        self.prebuild.append(options)


def _orchestrator(
    tmp_path: Path,
    factory: FakeCompilerFactory,
    recorder: Recorder,
    *,
    environ: Dict[str, str] | None = None,
    route_discovery: RouteDiscovery | None = None,
    exit: Callable[[int], Any] | None = None,
) -> Orchestrator:
    kwargs: Dict[str, Any] = {}
    if exit is not None:
        kwargs["exit"] = exit

    def _h5_factory(*args, **kw):
        return RecordingH5(*args, events=recorder.events, **kw)

    return Orchestrator(
        factory,
        prebuild_tasks=recorder.prebuild_tasks,
        route_discovery=route_discovery or RouteDiscovery(StaticScanner([]), StaticExtractor()),
        config=MiniBuildConfig(root=tmp_path),
        environ=environ if environ is not None else {},
        h5_processor_factory=_h5_factory,
        **kwargs,
    )


def test_unsupported_platform_fails_before_compiling(tmp_path: Path) -> None:
    factory = FakeCompilerFactory()
    recorder = Recorder()
    environ: Dict[str, str] = {}

    with pytest.raises(ValidationError, match="Unsupported platform"):
        _orchestrator(tmp_path, factory, recorder, environ=environ).run(
            BuildOptions(platform="symbian", complete=recorder.complete), tmp_path
        )

    assert factory.compilers == []
    assert recorder.prebuild == []
    assert recorder.completions == []
    assert environ == {}


def test_watch_with_legacy_web_shell_is_rejected(tmp_path: Path) -> None:
    factory = FakeCompilerFactory()
    recorder = Recorder()

    with pytest.raises(ValidationError, match="one-shot"):
        _orchestrator(tmp_path, factory, recorder).run(
            BuildOptions(platform="h5", watch=True, legacy_web_shell=True), tmp_path
        )

    assert factory.compilers == []


def test_tsx_entry_requires_typescript(tmp_path: Path) -> None:
    (tmp_path / "source").mkdir()
    (tmp_path / "source" / "app.tsx").write_text("export default {}\n", encoding="utf-8")
    factory = FakeCompilerFactory()
    recorder = Recorder()

    with pytest.raises(ValidationError, match="typescript"):
        _orchestrator(tmp_path, factory, recorder).run(BuildOptions(platform="wx"), tmp_path)

    session = _orchestrator(tmp_path, factory, recorder).run(
        BuildOptions(platform="wx", typescript=True), tmp_path
    )
    assert session.context is not None and session.context.typescript is True


def test_one_shot_build_runs_pipeline_in_order(tmp_path: Path) -> None:
    stats = CompileStats(hash="feedfacecafebeef")
    factory = FakeCompilerFactory([(None, stats)])
    recorder = Recorder()
    environ = {ENV_WEBVIEW_VAR: "stale"}

    session = _orchestrator(tmp_path, factory, recorder, environ=environ).run(
        BuildOptions(platform="wx", beta=True, compress=True, complete=recorder.complete), tmp_path
    )

    assert session.state is BuildState.COMPLETED
    assert session.cycles == 1
    assert recorder.completions == [(None, stats)]
    assert environ == {ENV_PLATFORM_VAR: "wx"}

    prebuild = recorder.prebuild[0]
    assert (prebuild.platform, prebuild.beta, prebuild.beta_ui, prebuild.compress) == ("wx", True, False, True)
    assert prebuild.log is session.log

    config = factory.compilers[0].config
    assert config.platform == "wx"
    assert config.context is session.context
    assert len(session.log) == 0


def test_compress_prepends_loader_without_mutating_options(tmp_path: Path) -> None:
    factory = FakeCompilerFactory()
    recorder = Recorder()
    post_loaders = ["custom-post-loader"]

    _orchestrator(tmp_path, factory, recorder).run(
        BuildOptions(platform="ali", compress=True, post_loaders=post_loaders), tmp_path
    )

    assert factory.compilers[0].config.post_loaders == [COMPRESS_LOADER, "custom-post-loader"]
    assert post_loaders == ["custom-post-loader"]


def test_huawei_flag_only_applies_to_quick(tmp_path: Path) -> None:
    recorder = Recorder()

    wx = _orchestrator(tmp_path, FakeCompilerFactory(), recorder).run(
        BuildOptions(platform="wx", huawei=True), tmp_path
    )
    quick = _orchestrator(tmp_path, FakeCompilerFactory(), recorder).run(
        BuildOptions(platform="quick", huawei=True), tmp_path
    )

    assert wx.context is not None and wx.context.huawei is False
    assert quick.context is not None and quick.context.huawei is True


def test_quick_build_sets_webview_marker(tmp_path: Path) -> None:
    route = tmp_path / "source" / "pages" / "web" / "index.js"
    discovery = RouteDiscovery(StaticScanner([route]), StaticExtractor())
    environ: Dict[str, str] = {}
    recorder = Recorder()

    session = _orchestrator(
        tmp_path, FakeCompilerFactory(), recorder, environ=environ, route_discovery=discovery
    ).run(BuildOptions(platform="quick"), tmp_path)

    assert environ[ENV_PLATFORM_VAR] == "quick"
    assert environ[ENV_WEBVIEW_VAR] == WEBVIEW_SENTINEL
    assert session.context is not None
    assert session.context.webview.routes == [route]


def test_quick_build_without_routes_clears_marker(tmp_path: Path) -> None:
    environ = {ENV_WEBVIEW_VAR: WEBVIEW_SENTINEL}

    _orchestrator(tmp_path, FakeCompilerFactory(), Recorder(), environ=environ).run(
        BuildOptions(platform="quick"), tmp_path
    )

    assert environ[ENV_WEBVIEW_VAR] == ""


def test_watch_mode_drains_logs_every_cycle(tmp_path: Path) -> None:
    outcomes: List[Outcome] = [(None, CompileStats(hash=f"{index:016x}")) for index in range(3)]
    factory = FakeCompilerFactory(outcomes)
    recorder = Recorder()
    drained_sizes: List[int] = []

    def _complete(error, stats) -> None:
        drained_sizes.append(len(factory.compilers[0].config.log))
        recorder.complete(error, stats)

    session = _orchestrator(tmp_path, factory, recorder).run(
        BuildOptions(platform="tt", watch=True, complete=_complete), tmp_path
    )

    assert session.state is BuildState.WATCHING
    assert session.cycles == 3
    assert drained_sizes == [0, 0, 0]
    assert [stats.hash for _, stats in recorder.completions] == [stats.hash for _, stats in outcomes]
    assert isinstance(session.watching, FakeWatching)

    session.close()
    assert session.watching is None


def test_h5_post_processing_runs_before_completion_hook(tmp_path: Path) -> None:
    RecordingH5.instances.clear()
    recorder = Recorder()
    environ: Dict[str, str] = {}

    _orchestrator(tmp_path, FakeCompilerFactory(), recorder, environ=environ).run(
        BuildOptions(platform="h5", complete=recorder.complete), tmp_path
    )

    assert environ[ENV_PLATFORM_VAR] == "web"
    assert recorder.events == ["h5", "complete"]
    assert RecordingH5.instances[-1].calls == [("h5", False)]


def test_compiler_failure_still_invokes_completion_hook(tmp_path: Path) -> None:
    RecordingH5.instances.clear()
    failure = RuntimeError("webpack crashed")
    recorder = Recorder()

    _orchestrator(tmp_path, FakeCompilerFactory([(failure, None)]), recorder).run(
        BuildOptions(platform="h5", complete=recorder.complete), tmp_path
    )

    assert recorder.completions == [(failure, None)]
    assert RecordingH5.instances[-1].calls == []


def test_hosted_mode_exits_on_compile_error(tmp_path: Path) -> None:
    def _exit(code: int):
        raise SystemExit(code)

    stats = CompileStats(errors=["Module not found: ./missing"])
    recorder = Recorder()
    orchestrator = _orchestrator(
        tmp_path,
        FakeCompilerFactory([(None, stats)]),
        recorder,
        environ={"MINIBUILD_ENV": "hosted"},
        exit=_exit,
    )

    with pytest.raises(SystemExit) as excinfo:
        orchestrator.run(BuildOptions(platform="wx", complete=recorder.complete), tmp_path)

    assert excinfo.value.code == 1

    assert recorder.completions == []


def test_prebuild_failure_aborts_pipeline(tmp_path: Path) -> None:
    factory = FakeCompilerFactory()

    async def _failing(options: PreBuildOptions) -> None:
        raise OSError("disk full")

    orchestrator = Orchestrator(
        factory,
        prebuild_tasks=_failing,
        route_discovery=RouteDiscovery(StaticScanner([]), StaticExtractor()),
        config=MiniBuildConfig(root=tmp_path),
        environ={},
    )

    with pytest.raises(OSError, match="disk full"):
        asyncio.run(orchestrator.build(BuildOptions(platform="bu"), tmp_path))

    assert factory.compilers == []


def test_hosted_error_in_later_watch_cycle_exits_from_watcher_thread(tmp_path: Path) -> None:
    source = tmp_path / "source"
    source.mkdir()
    entry = source / "app.js"
    entry.write_text("App({})\n", encoding="utf-8")
    payloads = [{"hash": "ok"}, {"hash": "bad", "errors": ["Module not found: ./missing"]}]
    calls: List[int] = []
    exits: List[Tuple[int, bool]] = []

    def _runner(command, **kwargs) -> subprocess.CompletedProcess:
        payload = payloads[min(len(calls), len(payloads) - 1)]
        calls.append(1)
        return subprocess.CompletedProcess(command, 0, json.dumps(payload), "")

    def _factory(config: CompilerConfig) -> WebpackCliCompiler:
        return WebpackCliCompiler(
            config.to_dict(),
            command=["webpack", "--json"],
            cwd=tmp_path,
            config_path=tmp_path / ".CACHE" / "compiler-config.json",
            watch_paths=[source],
            runner=_runner,
        )

    def _exit(code: int) -> None:
        exits.append((code, threading.current_thread() is threading.main_thread()))

    orchestrator = Orchestrator(
        _factory,
        prebuild_tasks=Recorder().prebuild_tasks,
        route_discovery=RouteDiscovery(StaticScanner([]), StaticExtractor()),
        config=MiniBuildConfig(root=tmp_path),
        environ={},
        exit=_exit,
        watch_options={"aggregate_timeout": 0.1},
    )

    session = orchestrator.run(BuildOptions(platform="wx", watch=True, hosted=True), tmp_path)
    try:
        assert exits == []
        entry.write_text("App({ broken: true })\n", encoding="utf-8")

        deadline = time.monotonic() + 5
        while not exits and time.monotonic() < deadline:
            time.sleep(0.02)
    finally:
        session.close()

    assert exits == [(1, False)]


def test_compile_does_not_block_event_loop(tmp_path: Path) -> None:
    released = threading.Event()
    observed: List[bool] = []

    class BlockingCompiler:
        def run(self, callback) -> None:
            observed.append(released.wait(timeout=5))
            callback(None, CompileStats(hash="done"))

    async def _scenario() -> None:
        async def _release() -> None:
            await asyncio.sleep(0.05)
            released.set()

        orchestrator = Orchestrator(
            lambda config: BlockingCompiler(),
            prebuild_tasks=Recorder().prebuild_tasks,
            route_discovery=RouteDiscovery(StaticScanner([]), StaticExtractor()),
            config=MiniBuildConfig(root=tmp_path),
            environ={},
        )
        await asyncio.gather(orchestrator.build(BuildOptions(platform="wx"), tmp_path), _release())

    asyncio.run(_scenario())

    assert observed == [True]
