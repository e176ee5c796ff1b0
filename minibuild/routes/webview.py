"""Tree-sitter extraction of webview settings from page scripts."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import tree_sitter_javascript
from tree_sitter import Language, Node, Parser

from ..models import WebViewPage

_JS_LANGUAGE = Language(tree_sitter_javascript.language())

_UNSUPPORTED = object()


class WebViewExtractor:
    """Reads ``static config = { webview: {...} }`` from a page script.

    A ``quick`` block inside ``webview`` takes precedence over the top-level
    keys. Scalar siblings of ``pages`` are kept as options.
    """

    def __init__(self, platform_key: str = "quick") -> None:
        self.platform_key = platform_key
        self._parser = Parser(_JS_LANGUAGE)

    def extract(self, path: Path) -> Optional[WebViewPage]:
        source = path.read_bytes()
        tree = self._parser.parse(source)
        webview = _find_pair(tree.root_node, source, "webview")
        if webview is None:
            return None
        block = webview.child_by_field_name("value")
        if block is None or block.type != "object":
            return None

        nested = _direct_pair(block, source, self.platform_key)
        if nested is not None:
            nested_value = nested.child_by_field_name("value")
            if nested_value is not None and nested_value.type == "object":
                block = nested_value

        pages_pair = _direct_pair(block, source, "pages")
        if pages_pair is None:
            return None
        pages_value = _literal(pages_pair.child_by_field_name("value"), source)
        if pages_value is True:
            pages: bool | tuple[str, ...] = True
        elif isinstance(pages_value, list):
            pages = tuple(str(item) for item in pages_value)
        else:
            return None

        options: Dict[str, Any] = {}
        for child in block.named_children:
            if child.type != "pair":
                continue
            key = _key_name(child, source)
            if key is None or key in {"pages", self.platform_key}:
                continue
            value = _literal(child.child_by_field_name("value"), source)
            if value is not _UNSUPPORTED:
                options[key] = value
        return WebViewPage(path=path, pages=pages, options=options)


def _node_text(node: Node, source: bytes) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="ignore")


def _key_name(pair: Node, source: bytes) -> Optional[str]:
    key = pair.child_by_field_name("key")
    if key is None:
        return None
    text = _node_text(key, source)
    if key.type == "string":
        return text[1:-1]
    if key.type in {"property_identifier", "number"}:
        return text
    return None


def _find_pair(node: Node, source: bytes, name: str) -> Optional[Node]:
    if node.type == "pair" and _key_name(node, source) == name:
        return node
    for child in node.named_children:
        found = _find_pair(child, source, name)
        if found is not None:
            return found
    return None


def _direct_pair(obj: Node, source: bytes, name: str) -> Optional[Node]:
    for child in obj.named_children:
        if child.type == "pair" and _key_name(child, source) == name:
            return child
    return None


def _literal(node: Optional[Node], source: bytes) -> Any:
    if node is None:
        return _UNSUPPORTED
    text = _node_text(node, source)
    if node.type == "true":
        return True
    if node.type == "false":
        return False
    if node.type == "null":
        return None
    if node.type == "string":
        return text[1:-1]
    if node.type == "template_string":
        if any(child.type == "template_substitution" for child in node.named_children):
            return _UNSUPPORTED
        return text[1:-1]
    if node.type == "number":
        try:
            return int(text)
        except ValueError:
            try:
                return float(text)
            except ValueError:
                return _UNSUPPORTED
    if node.type == "array":
        items = []
        for child in node.named_children:
            if child.type == "comment":
                continue
            value = _literal(child, source)
            if value is _UNSUPPORTED:
                return _UNSUPPORTED
            items.append(value)
        return items
    if node.type == "object":
        mapping: Dict[str, Any] = {}
        for child in node.named_children:
            if child.type != "pair":
                continue
            key = _key_name(child, source)
            value = _literal(child.child_by_field_name("value"), source)
            if key is None or value is _UNSUPPORTED:
                continue
            mapping[key] = value
        return mapping
    return _UNSUPPORTED


__all__ = ["WebViewExtractor"]
