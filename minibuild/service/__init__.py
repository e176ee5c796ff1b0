"""Development server for watch-mode H5 builds."""

from __future__ import annotations

from .app import BuildStatus, DevServer, DevServerState, create_dev_app

__all__ = ["BuildStatus", "DevServer", "DevServerState", "create_dev_app"]
