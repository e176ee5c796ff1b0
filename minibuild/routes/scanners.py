"""Scanners that find page scripts declaring the webview ``pages`` capability."""

from __future__ import annotations

import platform
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterable, List, Optional

WEBVIEW_PATTERN = r"pages:\s*(\btrue\b|\[.+\])"

_WEBVIEW_RE = re.compile(WEBVIEW_PATTERN)
_GREP_LINE_RE = re.compile(r"^(?P<path>.+?\.js):")


class RouteDiscoveryError(RuntimeError):
    """Raised when the page scan cannot be completed."""


class WebViewScanner(ABC):
    """Contract shared by scanners: sorted, distinct, absolute page paths."""

    @abstractmethod
    def scan(self, pages_dir: Path) -> List[Path]:
        """Return page scripts under ``pages_dir`` whose source declares ``pages``."""


class RegexScanner(WebViewScanner):
    """Reads every page script and matches it in-process."""

    def scan(self, pages_dir: Path) -> List[Path]:
        if not pages_dir.is_dir():
            return []
        matches: List[Path] = []
        for path in sorted(pages_dir.rglob("*.js")):
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8", errors="ignore")
            except OSError as exc:
                raise RouteDiscoveryError(f"Failed to read {path}: {exc}") from exc
            if _WEBVIEW_RE.search(content):
                matches.append(path.resolve())
        return matches


class GrepScanner(WebViewScanner):
    """Delegates the text search to ``grep -r -E``."""

    def __init__(
        self,
        executable: str = "grep",
        *,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.executable = executable
        self._runner = runner

    def scan(self, pages_dir: Path) -> List[Path]:
        if not pages_dir.is_dir():
            return []
        command = [
            self.executable,
            "-r",
            "-E",
            "--include=*.js",
            WEBVIEW_PATTERN,
            str(pages_dir),
        ]
        try:
            completed = self._runner(command, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise RouteDiscoveryError(f"Failed to run {self.executable}: {exc}") from exc

        # grep exits 1 when nothing matched.
        if completed.returncode == 1:
            return []
        if completed.returncode != 0:
            detail = (completed.stderr or "").strip() or f"exit status {completed.returncode}"
            raise RouteDiscoveryError(f"{self.executable} failed: {detail}")
        return parse_grep_output(completed.stdout.splitlines())


def parse_grep_output(lines: Iterable[str]) -> List[Path]:
    """Extract matching page paths from ``path:matched text`` lines."""
    routes = set()
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        match = _GREP_LINE_RE.match(line)
        candidate = match.group("path") if match else line.rstrip(":")
        if "/pages/" not in candidate.replace("\\", "/"):
            continue
        routes.add(Path(candidate).resolve())
    return sorted(routes)


def select_scanner(
    system: Optional[str] = None,
    *,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> WebViewScanner:
    """Pick the scanner for this host: grep where available, in-process otherwise."""
    system = system or platform.system()
    if system == "Windows" or which("grep") is None:
        return RegexScanner()
    return GrepScanner()


__all__ = [
    "GrepScanner",
    "RegexScanner",
    "RouteDiscoveryError",
    "WEBVIEW_PATTERN",
    "WebViewScanner",
    "parse_grep_output",
    "select_scanner",
]
