"""CLI entrypoints for minibuild commands."""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

from .config import ConfigError, load_config
from .logging import configure_logging
from .merge import MergeConflictError, merge_projects
from .options import SUPPORTED_PLATFORMS, BuildOptions
from .orchestrator import Orchestrator, ValidationError
from .routes import QUICK_PLATFORM, RouteDiscovery, RouteDiscoveryError


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_path_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the project root (defaults to current directory).",
    )


def _add_flag(parser: argparse.ArgumentParser, *names: str, help: str) -> None:
    # None means "not given" so .minibuild.yml defaults survive.
    parser.add_argument(*names, action="store_true", default=None, help=help)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="minibuild",
        description="Merge mini-app projects and build them for multiple platforms.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser(
        "build",
        help="Compile the project for a platform target.",
    )
    _add_verbose_option(build_parser, suppress_default=True)
    _add_path_argument(build_parser)
    build_parser.add_argument(
        "-p",
        "--platform",
        choices=SUPPORTED_PLATFORMS,
        default=None,
        help="Platform target (defaults to build.platform in .minibuild.yml, then wx).",
    )
    _add_flag(build_parser, "-w", "--watch", help="Rebuild on changes until interrupted.")
    _add_flag(build_parser, "-b", "--beta", help="Build against the beta framework runtime.")
    _add_flag(build_parser, "--beta-ui", help="Build against the beta UI component library.")
    _add_flag(build_parser, "-c", "--compress", help="Compress emitted code and assets.")
    _add_flag(build_parser, "-t", "--typescript", help="Compile TypeScript sources.")
    _add_flag(build_parser, "--huawei", help="Target Huawei quick-app devices.")
    _add_flag(build_parser, "--analysis", help="Emit a bundle analysis report.")
    _add_flag(build_parser, "-s", "--silent", help="Hide compiler warnings.")
    _add_flag(
        build_parser,
        "--legacy-web-shell",
        help="Inject the H5 bundle into the legacy web shell (one-shot only).",
    )

    merge_parser = subparsers.add_parser(
        "merge",
        help="Merge the project with previously downloaded sub-projects.",
    )
    _add_verbose_option(merge_parser, suppress_default=True)
    _add_path_argument(merge_parser)

    routes_parser = subparsers.add_parser(
        "routes",
        help="List quick-app pages that declare webview pages.",
    )
    _add_verbose_option(routes_parser, suppress_default=True)
    _add_path_argument(routes_parser)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for minibuild commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    project_root = Path(args.path).expanduser().resolve()
    try:
        config = load_config(project_root)
    except ConfigError as exc:
        parser.exit(1, f"{exc}\n")

    if args.command == "build":
        options = BuildOptions.from_config(
            config,
            watch=args.watch,
            platform=args.platform,
            beta=args.beta,
            beta_ui=args.beta_ui,
            compress=args.compress,
            typescript=args.typescript,
            huawei=args.huawei,
            analysis=args.analysis,
            silent=args.silent,
            legacy_web_shell=args.legacy_web_shell,
        )
        orchestrator = Orchestrator(config=config)
        try:
            session = orchestrator.run(options, project_root)
        except ValidationError as exc:
            parser.exit(1, f"{exc}\n")
        except (ConfigError, RouteDiscoveryError, MergeConflictError, OSError) as exc:
            parser.exit(1, f"minibuild build failed: {exc}\nRun with --verbose for more details.\n")
        except Exception as exc:  # pragma: no cover
            parser.exit(1, f"minibuild build failed: {exc}\nRun with --verbose for more details.\n")

        if options.watch:
            try:
                while True:
                    time.sleep(1)
            except KeyboardInterrupt:
                print("Stopping watch mode")
            finally:
                session.close()
            return

        stats = session.last_stats
        if stats is not None and stats.has_errors():
            parser.exit(1, f"Build finished with {len(stats.errors)} error(s)\n")
        print(f"Build finished for {options.platform}")
    elif args.command == "merge":
        try:
            result = asyncio.run(
                merge_projects(
                    project_root,
                    cache_root=config.cache_root,
                    max_concurrency=config.merge.max_concurrency,
                    collision=config.merge.collision,
                )
            )
        except MergeConflictError as exc:
            parser.exit(1, f"{exc}\n")
        except OSError as exc:
            parser.exit(1, f"minibuild merge failed: {exc}\n")
        print(f"Merged {len(result.copied)} files into {_relativize(result.merge_dir)}")
        for entry in result.queue:
            print(f"  queued ({entry.role.value}): {_relativize(entry.path)}")
    elif args.command == "routes":
        try:
            rules = RouteDiscovery().discover(project_root, QUICK_PLATFORM)
        except RouteDiscoveryError as exc:
            parser.exit(1, f"{exc}\n")
        if not rules.pages:
            print("No webview pages declared")
        for route in rules.routes:
            print(_relativize(route))
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


def _relativize(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
