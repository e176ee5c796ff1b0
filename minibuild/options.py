"""Build options and compiler configuration assembly."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import MiniBuildConfig
from .models import BuildContext, CompileStats
from .reporting import BuildLog

SUPPORTED_PLATFORMS = ("wx", "qq", "ali", "bu", "tt", "quick", "h5")
H5_PLATFORM = "h5"
COMPRESS_LOADER = "minibuild-compress-loader"

CompletionHook = Callable[[Optional[BaseException], Optional[CompileStats]], None]


def _noop_complete(error: Optional[BaseException], stats: Optional[CompileStats]) -> None:
    return None


@dataclass
class BuildOptions:
    """Everything a caller can ask of one build invocation."""

    watch: bool = False
    platform: str = "wx"
    beta: bool = False
    beta_ui: bool = False
    compress: bool = False
    compress_options: Dict[str, Any] = field(default_factory=dict)
    typescript: bool = False
    huawei: bool = False
    legacy_web_shell: bool = False
    rules: List[Any] = field(default_factory=list)
    prev_loaders: List[str] = field(default_factory=list)
    post_loaders: List[str] = field(default_factory=list)
    prev_js_loaders: List[str] = field(default_factory=list)
    post_js_loaders: List[str] = field(default_factory=list)
    prev_css_loaders: List[str] = field(default_factory=list)
    post_css_loaders: List[str] = field(default_factory=list)
    plugins: List[Any] = field(default_factory=list)
    analysis: bool = False
    silent: bool = False
    # None defers to the MINIBUILD_ENV environment marker.
    hosted: Optional[bool] = None
    complete: CompletionHook = _noop_complete

    @classmethod
    def from_config(cls, config: MiniBuildConfig, **overrides: Any) -> "BuildOptions":
        """Seed options from .minibuild.yml; explicit non-None overrides win."""
        build = config.build
        loaders = config.loaders
        values: Dict[str, Any] = {
            "platform": build.platform or "wx",
            "beta": build.beta,
            "beta_ui": build.beta_ui,
            "compress": build.compress,
            "typescript": build.typescript,
            "huawei": build.huawei,
            "legacy_web_shell": build.legacy_web_shell,
            "analysis": build.analysis,
            "silent": build.silent,
            "hosted": True if build.hosted else None,
            "prev_loaders": list(loaders.prev),
            "post_loaders": list(loaders.post),
            "prev_js_loaders": list(loaders.prev_js),
            "post_js_loaders": list(loaders.post_js),
            "prev_css_loaders": list(loaders.prev_css),
            "post_css_loaders": list(loaders.post_css),
        }
        known = {item.name for item in fields(cls)}
        for key, value in overrides.items():
            if key not in known:
                raise TypeError(f"Unknown build option: {key}")
            if value is not None:
                values[key] = value
        return cls(**values)


@dataclass(frozen=True)
class PreBuildOptions:
    """Arguments handed to the pre-build task set."""

    platform: str
    beta: bool
    beta_ui: bool
    compress: bool
    cwd: Path
    log: BuildLog
    config: Optional[MiniBuildConfig] = None


@dataclass
class CompilerConfig:
    """Normalized configuration handed to the compiler factory."""

    cwd: Path
    context: BuildContext
    log: BuildLog
    compress_options: Dict[str, Any] = field(default_factory=dict)
    beta: bool = False
    beta_ui: bool = False
    analysis: bool = False
    rules: List[Any] = field(default_factory=list)
    prev_loaders: List[str] = field(default_factory=list)
    post_loaders: List[str] = field(default_factory=list)
    prev_js_loaders: List[str] = field(default_factory=list)
    post_js_loaders: List[str] = field(default_factory=list)
    prev_css_loaders: List[str] = field(default_factory=list)
    post_css_loaders: List[str] = field(default_factory=list)
    plugins: List[Any] = field(default_factory=list)

    @property
    def platform(self) -> str:
        return self.context.platform

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serialisable view for out-of-process compilers."""
        context = self.context
        return {
            "cwd": str(self.cwd),
            "platform": context.platform,
            "compress": context.compress,
            "compressOption": dict(self.compress_options),
            "typescript": context.typescript,
            "huawei": context.huawei,
            "legacyWebShell": context.legacy_web_shell,
            "webviewPages": [str(page.path) for page in context.webview.pages],
            "beta": self.beta,
            "betaUi": self.beta_ui,
            "analysis": self.analysis,
            "rules": [rule if isinstance(rule, (dict, str)) else repr(rule) for rule in self.rules],
            "prevLoaders": list(self.prev_loaders),
            "postLoaders": list(self.post_loaders),
            "prevJsLoaders": list(self.prev_js_loaders),
            "postJsLoaders": list(self.post_js_loaders),
            "prevCssLoaders": list(self.prev_css_loaders),
            "postCssLoaders": list(self.post_css_loaders),
            "plugins": [plugin if isinstance(plugin, str) else repr(plugin) for plugin in self.plugins],
        }


def build_compiler_config(
    options: BuildOptions,
    context: BuildContext,
    *,
    cwd: Path,
    log: BuildLog,
) -> CompilerConfig:
    """Assemble the compiler configuration; caller lists are copied, never mutated."""
    post_loaders = list(options.post_loaders)
    if context.compress:
        post_loaders.insert(0, COMPRESS_LOADER)
    return CompilerConfig(
        cwd=cwd,
        context=context,
        log=log,
        compress_options=dict(options.compress_options),
        beta=options.beta,
        beta_ui=options.beta_ui,
        analysis=options.analysis,
        rules=list(options.rules),
        prev_loaders=list(options.prev_loaders),
        post_loaders=post_loaders,
        prev_js_loaders=list(options.prev_js_loaders),
        post_js_loaders=list(options.post_js_loaders),
        prev_css_loaders=list(options.prev_css_loaders),
        post_css_loaders=list(options.post_css_loaders),
        plugins=list(options.plugins),
    )


__all__ = [
    "BuildOptions",
    "COMPRESS_LOADER",
    "CompilerConfig",
    "CompletionHook",
    "H5_PLATFORM",
    "PreBuildOptions",
    "SUPPORTED_PLATFORMS",
    "build_compiler_config",
]
