"""Configuration loading for minibuild (.minibuild.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

CONFIG_FILENAME = ".minibuild.yml"


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class BuildSettings:
    """Default build flags from .minibuild.yml; CLI flags take precedence."""

    platform: Optional[str] = None
    compress: bool = False
    typescript: bool = False
    huawei: bool = False
    beta: bool = False
    beta_ui: bool = False
    analysis: bool = False
    silent: bool = False
    legacy_web_shell: bool = False
    hosted: bool = False


@dataclass
class LoaderSettings:
    """Ordered loader ids injected around the compiler's built-in rules."""

    prev: List[str] = field(default_factory=list)
    post: List[str] = field(default_factory=list)
    prev_js: List[str] = field(default_factory=list)
    post_js: List[str] = field(default_factory=list)
    prev_css: List[str] = field(default_factory=list)
    post_css: List[str] = field(default_factory=list)


@dataclass
class MergeSettings:
    """Multi-project merge behaviour."""

    enabled: bool = False
    cache_dir: str = ".CACHE"
    max_concurrency: Optional[int] = 32
    collision: str = "overwrite"


@dataclass
class H5Settings:
    """Web target output and development server settings."""

    output_dir: str = "dist/web"
    dev_host: str = "127.0.0.1"
    dev_port: int = 8080


@dataclass
class CompilerSettings:
    """External compiler invocation."""

    command: List[str] = field(default_factory=lambda: ["npx", "webpack", "--json"])


@dataclass
class MiniBuildConfig:
    """Represents the high-level settings defined in .minibuild.yml."""

    root: Path
    build: BuildSettings = field(default_factory=BuildSettings)
    loaders: LoaderSettings = field(default_factory=LoaderSettings)
    merge: MergeSettings = field(default_factory=MergeSettings)
    h5: H5Settings = field(default_factory=H5Settings)
    compiler: CompilerSettings = field(default_factory=CompilerSettings)

    @property
    def cache_root(self) -> Path:
        return self.root / self.merge.cache_dir


def load_config(config_path: Path) -> MiniBuildConfig:
    """Load configuration from disk."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return MiniBuildConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    build_data = _as_dict(data.get("build"))
    build = BuildSettings(
        platform=_as_str(build_data.get("platform")),
        compress=_as_bool(build_data.get("compress")) or False,
        typescript=_as_bool(build_data.get("typescript")) or False,
        huawei=_as_bool(build_data.get("huawei")) or False,
        beta=_as_bool(build_data.get("beta")) or False,
        beta_ui=_as_bool(build_data.get("beta_ui")) or False,
        analysis=_as_bool(build_data.get("analysis")) or False,
        silent=_as_bool(build_data.get("silent")) or False,
        legacy_web_shell=_as_bool(build_data.get("legacy_web_shell")) or False,
        hosted=_as_bool(build_data.get("hosted")) or False,
    )

    loader_data = _as_dict(data.get("loaders"))
    loaders = LoaderSettings(
        prev=_as_str_list(loader_data.get("prev")),
        post=_as_str_list(loader_data.get("post")),
        prev_js=_as_str_list(loader_data.get("prev_js")),
        post_js=_as_str_list(loader_data.get("post_js")),
        prev_css=_as_str_list(loader_data.get("prev_css")),
        post_css=_as_str_list(loader_data.get("post_css")),
    )

    merge_data = _as_dict(data.get("merge"))
    merge = MergeSettings()
    if merge_data:
        merge.enabled = _as_bool(merge_data.get("enabled")) or False
        merge.cache_dir = _as_str(merge_data.get("cache_dir")) or merge.cache_dir
        if "max_concurrency" in merge_data:
            merge.max_concurrency = _as_int(merge_data.get("max_concurrency"))
        collision = _as_str(merge_data.get("collision"))
        if collision:
            if collision not in {"overwrite", "keep-first", "error"}:
                raise ConfigError(f"Unknown merge collision policy: {collision}")
            merge.collision = collision

    h5_data = _as_dict(data.get("h5"))
    h5 = H5Settings()
    if h5_data:
        h5.output_dir = _as_str(h5_data.get("output_dir")) or h5.output_dir
        h5.dev_host = _as_str(h5_data.get("dev_host")) or h5.dev_host
        h5.dev_port = _as_int(h5_data.get("dev_port")) or h5.dev_port

    compiler_data = _as_dict(data.get("compiler"))
    compiler = CompilerSettings()
    command = _as_str_list(compiler_data.get("command"))
    if command:
        compiler.command = command

    return MiniBuildConfig(
        root=root,
        build=build,
        loaders=loaders,
        merge=merge,
        h5=h5,
        compiler=compiler,
    )


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    if config_path.name != CONFIG_FILENAME:
        return (config_path.parent / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read {path.name}: {exc}") from exc
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float, bool)) else None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []
