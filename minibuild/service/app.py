"""FastAPI development server for the H5 target in watch mode."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Mapping, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from ..compilers import CompileCallback, Compiler, Watching
from ..logging import get_logger
from ..models import CompileStats


class HealthResponse(BaseModel):
    status: str


class BuildStatus(BaseModel):
    compiled: bool = False
    hash: Optional[str] = None
    warnings: int = 0
    errors: int = 0
    failure: Optional[str] = None


class DevServerState:
    """Latest compile outcome, shared between the watcher and request handlers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = BuildStatus()

    def record(self, error: Optional[BaseException], stats: Optional[CompileStats]) -> None:
        with self._lock:
            if error is not None or stats is None:
                self._status = BuildStatus(compiled=False, failure=str(error) if error else None)
                return
            self._status = BuildStatus(
                compiled=True,
                hash=stats.hash or None,
                warnings=len(stats.warnings),
                errors=len(stats.errors),
            )

    def snapshot(self) -> BuildStatus:
        with self._lock:
            return self._status.model_copy()


def create_dev_app(output_dir: Path, state: DevServerState | None = None) -> FastAPI:
    """Create the application serving compiled H5 assets from ``output_dir``."""
    state = state or DevServerState()
    app = FastAPI(title="minibuild H5 dev server", version="1.0.0")
    app.state.build = state

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/__build", response_model=BuildStatus)
    async def build_status() -> BuildStatus:
        return state.snapshot()

    app.mount("/", StaticFiles(directory=str(output_dir), html=True, check_dir=False), name="assets")
    return app


class DevServer:
    """Binds a watching H5 compiler to a uvicorn server on a background thread."""

    def __init__(
        self,
        compiler: Compiler,
        output_dir: Path,
        *,
        host: str = "127.0.0.1",
        port: int = 8080,
        watch_options: Mapping[str, Any] | None = None,
        on_compiled: CompileCallback | None = None,
    ) -> None:
        self.compiler = compiler
        self.output_dir = output_dir
        self.host = host
        self.port = port
        self.watch_options = dict(watch_options or {})
        self.state = DevServerState()
        self._on_compiled = on_compiled
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None
        self._watching: Watching | None = None
        self.logger = get_logger("devserver")

    def start(self) -> None:
        app = create_dev_app(self.output_dir, self.state)
        config = uvicorn.Config(app, host=self.host, port=self.port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run, name="minibuild-h5-dev-server", daemon=True
        )
        self._thread.start()
        self.logger.info("H5 dev server listening on http://%s:%d", self.host, self.port)
        self._watching = self.compiler.watch(self.watch_options, self._compiled)

    def stop(self) -> None:
        if self._watching is not None:
            self._watching.close()
            self._watching = None
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _compiled(self, error: Optional[BaseException], stats: Optional[CompileStats]) -> None:
        self.state.record(error, stats)
        if self._on_compiled is not None:
            self._on_compiled(error, stats)


__all__ = ["BuildStatus", "DevServer", "DevServerState", "create_dev_app"]
