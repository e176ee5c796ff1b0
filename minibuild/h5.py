"""Post-processing for the web (H5) target."""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, List, Optional

from .compilers import CompilerFactory
from .logging import get_logger
from .models import BuildContext, CompileStats
from .reporting import BuildLog, Reporter
from .service.app import DevServer

INTERMEDIATE_DIRNAME = "__intermediate__"
LEGACY_SHELL_DIRNAME = "src"
LEGACY_BUNDLE_DIR = Path("dist") / "web"
TEMPLATE_DIR = Path(__file__).resolve().parent / "templates" / "legacy_shell"

_BUNDLE_IMPORT_RE = re.compile(r"^import '\./dist/web/bundle\.[0-9a-f]+\.js';\n")

DevServerFactory = Callable[..., DevServer]


@dataclass
class H5CompilerConfig:
    """Configuration for the secondary web compiler."""

    kind: ClassVar[str] = "h5"

    cwd: Path
    mode: str
    entry: str
    output_path: Path
    typescript: bool
    legacy_web_shell: bool
    log: BuildLog

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cwd": str(self.cwd),
            "mode": self.mode,
            "entry": self.entry,
            "outputPath": str(self.output_path),
            "typescript": self.typescript,
            "legacyWebShell": self.legacy_web_shell,
        }


def build_h5_config(
    context: BuildContext,
    *,
    cwd: Path,
    watch: bool,
    output_dir: str,
    log: BuildLog,
) -> H5CompilerConfig:
    entry = str(cwd / "source" / "app")
    if context.typescript:
        entry += ".tsx"
    return H5CompilerConfig(
        cwd=cwd,
        mode="development" if watch else "production",
        entry=entry,
        output_path=cwd / output_dir,
        typescript=context.typescript,
        legacy_web_shell=context.legacy_web_shell,
        log=log,
    )


def ensure_legacy_scaffold(cwd: Path, template_dir: Path = TEMPLATE_DIR) -> bool:
    """Copy the legacy shell template into ``<cwd>/src`` unless it already exists."""
    target = cwd / LEGACY_SHELL_DIRNAME
    if target.exists():
        return False
    shutil.copytree(template_dir, target)
    return True


def bundle_import(compile_hash: str) -> str:
    return f"import './dist/web/bundle.{compile_hash[:10]}.js';\n"


def rewrite_legacy_entry(cwd: Path, compile_hash: str) -> Path:
    """Prepend the bundle import to the shell entry, replacing a previous one."""
    app_path = cwd / LEGACY_SHELL_DIRNAME / "app.js"
    script = app_path.read_text(encoding="utf-8")
    script = _BUNDLE_IMPORT_RE.sub("", script, count=1)
    app_path.write_text(bundle_import(compile_hash) + script, encoding="utf-8")
    return app_path


def relocate_assets(output_path: Path, target: Path) -> List[Path]:
    """Copy emitted assets, minus intermediate artifacts, into ``target``."""
    target.mkdir(parents=True, exist_ok=True)
    copied: List[Path] = []
    for entry in sorted(output_path.iterdir()):
        if entry.name == INTERMEDIATE_DIRNAME:
            continue
        dest = target / entry.name
        if entry.is_dir():
            shutil.copytree(entry, dest, dirs_exist_ok=True)
        else:
            shutil.copy2(entry, dest)
        copied.append(dest)
    return copied


class H5PostProcessor:
    """Runs the secondary web compiler after each primary compile.

    One instance belongs to one build invocation, so the watch-mode dev
    server is started at most once however many cycles fire.
    """

    def __init__(
        self,
        compiler_factory: CompilerFactory,
        reporter: Reporter,
        *,
        cwd: Path,
        output_dir: str = "dist/web",
        dev_host: str = "127.0.0.1",
        dev_port: int = 8080,
        dev_server_factory: DevServerFactory = DevServer,
        template_dir: Path = TEMPLATE_DIR,
    ) -> None:
        self.compiler_factory = compiler_factory
        self.reporter = reporter
        self.cwd = cwd
        self.output_dir = output_dir
        self.dev_host = dev_host
        self.dev_port = dev_port
        self.dev_server_factory = dev_server_factory
        self.template_dir = template_dir
        self.dev_server: Optional[DevServer] = None
        self.logger = get_logger("h5")

    def process(self, context: BuildContext, *, watch: bool, log: BuildLog) -> None:
        if context.legacy_web_shell and ensure_legacy_scaffold(self.cwd, self.template_dir):
            self.logger.info("Created legacy shell scaffold at %s", self.cwd / LEGACY_SHELL_DIRNAME)

        config = build_h5_config(
            context, cwd=self.cwd, watch=watch, output_dir=self.output_dir, log=log
        )
        if watch:
            if self.dev_server is None:
                self.dev_server = self.dev_server_factory(
                    self.compiler_factory(config),
                    config.output_path,
                    host=self.dev_host,
                    port=self.dev_port,
                    on_compiled=self._report,
                )
                self.dev_server.start()
            return

        compiler = self.compiler_factory(config)
        compiler.run(partial(self._finish, context, config))

    def _finish(
        self,
        context: BuildContext,
        config: H5CompilerConfig,
        error: Optional[BaseException],
        stats: Optional[CompileStats],
    ) -> None:
        if error is not None or stats is None:
            self.logger.error("H5 compile failed: %s", error)
            return
        if context.legacy_web_shell:
            self._relocate_bundle(config, stats)
        self.reporter.report_stats(stats)

    def _relocate_bundle(self, config: H5CompilerConfig, stats: CompileStats) -> None:
        if not stats.hash:
            self.logger.error("H5 compile reported no hash; legacy shell entry left untouched")
            return
        app_path = rewrite_legacy_entry(self.cwd, stats.hash)
        output_path = stats.output_path or config.output_path
        target = self.cwd / LEGACY_SHELL_DIRNAME / LEGACY_BUNDLE_DIR
        copied = relocate_assets(output_path, target)
        self.logger.info("Rewrote %s and copied %d assets to %s", app_path, len(copied), target)

    def _report(self, error: Optional[BaseException], stats: Optional[CompileStats]) -> None:
        if error is not None or stats is None:
            self.logger.error("H5 compile failed: %s", error)
            return
        self.reporter.report_stats(stats)


__all__ = [
    "H5CompilerConfig",
    "H5PostProcessor",
    "INTERMEDIATE_DIRNAME",
    "build_h5_config",
    "bundle_import",
    "ensure_legacy_scaffold",
    "relocate_assets",
    "rewrite_legacy_entry",
]
