"""Core data models shared across minibuild components."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union


class Role(str, Enum):
    """How the merge engine treats a staged file."""

    PASS_THROUGH = "pass-through"
    MERGE = "merge"
    LOCK = "lock"
    IGNORE = "ignore"


@dataclass(frozen=True)
class FileRecord:
    """A staged file and the role assigned to it by name."""

    path: Path
    basename: str
    extension: str
    role: Role
    project: str


@dataclass(frozen=True)
class MergeQueueEntry:
    """A file deferred to the external merge collaborator."""

    path: Path
    role: Role


@dataclass(frozen=True)
class WebViewPage:
    """Webview metadata extracted from a page's static config."""

    path: Path
    pages: Union[bool, Tuple[str, ...]]
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebViewRules:
    """Pages that opted into the quick-app webview capability."""

    pages: Tuple[WebViewPage, ...] = ()

    @property
    def routes(self) -> List[Path]:
        return [page.path for page in self.pages]


@dataclass(frozen=True)
class BuildContext:
    """Per-invocation build settings, constructed once and passed by parameter."""

    platform: str
    compress: bool = False
    typescript: bool = False
    huawei: bool = False
    legacy_web_shell: bool = False
    webview: WebViewRules = field(default_factory=WebViewRules)


@dataclass
class CompileStats:
    """Outcome of a single compiler run."""

    hash: str = ""
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    output_path: Optional[Path] = None

    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def has_errors(self) -> bool:
        return bool(self.errors)
