"""Compiler contract and the webpack command-line adapter."""

from __future__ import annotations

import json
import os
import subprocess
import threading
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Protocol, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .logging import get_logger
from .models import CompileStats

CONFIG_ENV_VAR = "MINIBUILD_COMPILER_CONFIG"

CompileCallback = Callable[[Optional[BaseException], Optional[CompileStats]], None]


class CompilerError(RuntimeError):
    """Raised when the compiler cannot be run or its output cannot be read."""


class Watching(Protocol):
    def close(self) -> None:
        ...


class Compiler(Protocol):
    """What the orchestrator needs from a compiler instance."""

    def run(self, callback: CompileCallback) -> None:
        ...

    def watch(self, options: Mapping[str, Any], callback: CompileCallback) -> Watching:
        ...


CompilerFactory = Callable[[Any], Compiler]


def _message_text(entry: Any) -> str:
    if isinstance(entry, Mapping):
        message = str(entry.get("message", ""))
        module = entry.get("moduleName")
        return f"{module}\n{message}" if module else message
    return str(entry)


def parse_stats(payload: str | Mapping[str, Any]) -> CompileStats:
    """Read webpack ``--json`` stats into :class:`CompileStats`."""
    if isinstance(payload, str):
        start = payload.find("{")
        if start < 0:
            raise ValueError("compiler output contains no JSON object")
        data = json.loads(payload[start:])
    else:
        data = payload
    if not isinstance(data, Mapping):
        raise ValueError("compiler stats must be a JSON object")

    warnings = [_message_text(item) for item in data.get("warnings") or []]
    errors = [_message_text(item) for item in data.get("errors") or []]
    compile_hash = str(data.get("hash") or "")
    output_path = data.get("outputPath")

    # Multi-compiler stats nest per-compiler results under "children".
    for child in data.get("children") or []:
        if not isinstance(child, Mapping):
            continue
        child_stats = parse_stats(child)
        warnings.extend(child_stats.warnings)
        errors.extend(child_stats.errors)
        compile_hash = compile_hash or child_stats.hash
        output_path = output_path or child_stats.output_path

    return CompileStats(
        hash=compile_hash,
        warnings=warnings,
        errors=errors,
        output_path=Path(output_path) if output_path else None,
    )


# Reads by the compiler itself (opened, closed_no_write) must not trigger rebuilds.
_REBUILD_EVENTS = frozenset({"created", "modified", "deleted", "moved", "closed"})


class _RecompileHandler(FileSystemEventHandler):
    """Collapses a burst of source changes into one trailing recompile."""

    def __init__(
        self,
        compiler: "WebpackCliCompiler",
        callback: CompileCallback,
        *,
        ignored: Iterable[Path],
        aggregate_timeout: float,
    ) -> None:
        super().__init__()
        self._compiler = compiler
        self._callback = callback
        self._ignored = [path.resolve() for path in ignored]
        self._aggregate_timeout = aggregate_timeout
        self._lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._closed = False

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _REBUILD_EVENTS:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if all(self._is_ignored(Path(os.fsdecode(path))) for path in paths if path):
            return
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._aggregate_timeout, self._recompile)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        """Drop any pending recompile and ignore further events."""
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _recompile(self) -> None:
        with self._lock:
            if self._closed:
                return
        with self._run_lock:
            self._compiler.run(self._callback)

    def _is_ignored(self, path: Path) -> bool:
        resolved = path.resolve()
        return any(resolved.is_relative_to(root) for root in self._ignored)


class _ObserverWatching:
    def __init__(self, observer: Observer, handler: _RecompileHandler) -> None:
        self._observer = observer
        self._handler = handler

    def close(self) -> None:
        self._handler.cancel()
        self._observer.stop()
        self._observer.join()


class WebpackCliCompiler:
    """Runs a webpack-compatible command and reads its ``--json`` stats.

    The serialized configuration is written to ``config_path`` and exposed to
    the command through ``MINIBUILD_COMPILER_CONFIG``.
    """

    def __init__(
        self,
        payload: Mapping[str, Any],
        *,
        command: Sequence[str],
        cwd: Path,
        config_path: Path,
        watch_paths: Sequence[Path] = (),
        ignored_paths: Sequence[Path] = (),
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        if not command:
            raise ValueError("compiler command must not be empty")
        self.payload = dict(payload)
        self.command = list(command)
        self.cwd = cwd
        self.config_path = config_path
        self.watch_paths = list(watch_paths)
        self.ignored_paths = list(ignored_paths)
        self._runner = runner
        self.logger = get_logger("compiler")

    def compile(self) -> CompileStats:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(json.dumps(self.payload, indent=2), encoding="utf-8")
        env = dict(os.environ)
        env[CONFIG_ENV_VAR] = str(self.config_path)

        self.logger.debug("Running %s", " ".join(self.command))
        try:
            completed = self._runner(
                self.command,
                cwd=str(self.cwd),
                env=env,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise CompilerError(f"Failed to run {self.command[0]}: {exc}") from exc

        stdout = (completed.stdout or "").strip()
        if not stdout:
            detail = (completed.stderr or "").strip() or f"exit status {completed.returncode}"
            raise CompilerError(f"{self.command[0]} produced no stats: {detail}")
        try:
            return parse_stats(stdout)
        except ValueError as exc:
            raise CompilerError(f"Could not read compiler stats: {exc}") from exc

    def run(self, callback: CompileCallback) -> None:
        try:
            stats = self.compile()
        except CompilerError as exc:
            callback(exc, None)
            return
        callback(None, stats)

    def watch(self, options: Mapping[str, Any], callback: CompileCallback) -> Watching:
        """Compile once, then recompile whenever a watched path changes."""
        self.run(callback)
        handler = _RecompileHandler(
            self,
            callback,
            ignored=[self.config_path.parent, *self.ignored_paths],
            aggregate_timeout=float(options.get("aggregate_timeout", 0.3)),
        )
        observer = Observer()
        for path in self.watch_paths:
            if path.exists():
                observer.schedule(handler, str(path), recursive=True)
        observer.start()
        return _ObserverWatching(observer, handler)


def webpack_cli_factory(
    command: Sequence[str],
    *,
    cache_root: Path,
    ignored_paths: Sequence[Path] = (),
) -> CompilerFactory:
    """Return a factory building :class:`WebpackCliCompiler` from a compiler config."""

    def _factory(config: Any) -> WebpackCliCompiler:
        kind = getattr(config, "kind", "compiler")
        cwd = Path(config.cwd)
        watch_paths: List[Path] = [cwd / "source"]
        return WebpackCliCompiler(
            config.to_dict(),
            command=command,
            cwd=cwd,
            config_path=cache_root / f"{kind}-config.json",
            watch_paths=watch_paths,
            ignored_paths=ignored_paths,
        )

    return _factory


__all__ = [
    "CONFIG_ENV_VAR",
    "CompileCallback",
    "Compiler",
    "CompilerError",
    "CompilerFactory",
    "Watching",
    "WebpackCliCompiler",
    "parse_stats",
    "webpack_cli_factory",
]
