"""Discovery of quick-app pages that declare the webview capability."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Protocol

from ..logging import get_logger
from ..models import WebViewPage, WebViewRules
from .scanners import WebViewScanner, select_scanner

QUICK_PLATFORM = "quick"
WEBVIEW_SENTINEL = "need_require_webview_file"


class MetadataExtractor(Protocol):
    def extract(self, path: Path) -> Optional[WebViewPage]:
        ...


class RouteDiscovery:
    """Scans ``source/pages`` and extracts webview metadata for each hit."""

    def __init__(
        self,
        scanner: WebViewScanner | None = None,
        extractor: MetadataExtractor | None = None,
    ) -> None:
        self.scanner = scanner or select_scanner()
        self._extractor = extractor
        self.logger = get_logger("routes")

    @property
    def extractor(self) -> MetadataExtractor:
        if self._extractor is None:
            from .webview import WebViewExtractor

            self._extractor = WebViewExtractor(QUICK_PLATFORM)
        return self._extractor

    def find_routes(self, cwd: Path, platform: str) -> List[Path]:
        """Return page scripts declaring ``pages``; empty for non-quick platforms."""
        if platform != QUICK_PLATFORM:
            return []
        pages_dir = Path(cwd) / "source" / "pages"
        return self.scanner.scan(pages_dir)

    def discover(self, cwd: Path, platform: str) -> WebViewRules:
        """Scan for webview pages and extract their metadata before returning."""
        routes = self.find_routes(cwd, platform)
        if not routes:
            return WebViewRules()

        pages: List[WebViewPage] = []
        for route in routes:
            page = self.extractor.extract(route)
            if page is None or not page.pages:
                self.logger.debug("No webview pages declared in %s", route)
                continue
            pages.append(page)
        self.logger.debug("Discovered %d webview pages", len(pages))
        return WebViewRules(pages=tuple(pages))


def webview_flag(rules: WebViewRules) -> str:
    """Return the runtime marker value for the webview feature."""
    return WEBVIEW_SENTINEL if rules.pages else ""


__all__ = ["QUICK_PLATFORM", "RouteDiscovery", "WEBVIEW_SENTINEL", "webview_flag"]
