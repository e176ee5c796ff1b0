"""Webview route discovery for the quick-app target."""

from __future__ import annotations

from .discovery import QUICK_PLATFORM, WEBVIEW_SENTINEL, RouteDiscovery, webview_flag
from .scanners import (
    GrepScanner,
    RegexScanner,
    RouteDiscoveryError,
    WebViewScanner,
    select_scanner,
)

__all__ = [
    "GrepScanner",
    "QUICK_PLATFORM",
    "RegexScanner",
    "RouteDiscovery",
    "RouteDiscoveryError",
    "WEBVIEW_SENTINEL",
    "WebViewScanner",
    "select_scanner",
    "webview_flag",
]
