from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from .build_config import BuildConfig, Desktop, load_build_config, with_overrides
from .diagnostics import diagnose
from .errors import BuildAborted, BuildError
from .lib.command import CommandRunner
from .logging_utils import configure_logging
from .pipeline import PipelineExecutor
from .registry import StageRegistry
from .steps import (
    AssembleImageStep,
    BuildInstallerStep,
    CheckPrerequisitesStep,
    ConfigureBrandingStep,
    ConfigurePackagesStep,
    ConfigureServicesStep,
    CopyRelengStep,
    FetchInstallerStep,
    LocateArtifactStep,
    PrepareWorkspaceStep,
)
from .workspace import Workspace, WorkspaceLock, teardown

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_registry() -> StageRegistry:
    return StageRegistry(
        [
            CheckPrerequisitesStep(),
            PrepareWorkspaceStep(),
            CopyRelengStep(),
            FetchInstallerStep(),
            BuildInstallerStep(),
            ConfigureServicesStep(),
            ConfigureBrandingStep(),
            ConfigurePackagesStep(),
            AssembleImageStep(),
            LocateArtifactStep(),
        ]
    )


def _config_from_args(args: argparse.Namespace) -> BuildConfig:
    cfg = load_build_config(args.config) if args.config else BuildConfig()
    return with_overrides(
        cfg,
        workspace=getattr(args, "output", None),
        desktop=getattr(args, "desktop", None),
        installer_version=getattr(args, "installer_version", None),
        min_free_gb=getattr(args, "min_free_gb", None),
        dry_run=getattr(args, "dry_run", None),
    )


def _fail(e: BaseException) -> None:
    report = getattr(e, "report", None)
    stage = getattr(report, "failed_stage", None)
    log_path = getattr(report, "log_path", None)
    if isinstance(e, BuildError):
        kind = e.kind
    elif isinstance(e, KeyboardInterrupt):
        kind = BuildAborted.kind
    else:
        kind = type(e).__name__
    where = f"{stage}: " if stage else ""
    hint = f" (see {log_path})" if log_path else ""
    msg = str(e).splitlines()[0] if str(e) else kind
    print(f"error: {where}{kind}: {msg}{hint}", file=sys.stderr)


def cmd_build(args: argparse.Namespace, cfg: BuildConfig) -> int:
    executor = PipelineExecutor(cfg=cfg, registry=build_registry(), wipe=bool(args.wipe))
    report = executor.run()
    if report.artifact is not None:
        print(report.artifact.path)
    return EXIT_OK


def cmd_diagnose(args: argparse.Namespace, cfg: BuildConfig) -> int:
    print(diagnose(cfg).render())
    return EXIT_OK


def cmd_clean(args: argparse.Namespace, cfg: BuildConfig) -> int:
    ws = Workspace.from_path(cfg.workspace_root)
    if not ws.is_managed():
        logger.info("Nothing to clean at %s", ws.root)
        return EXIT_OK
    runner = CommandRunner(default_timeout=cfg.command_timeout)
    with WorkspaceLock(ws.lock_path):
        removed = teardown(ws, keep_artifacts=not args.all, runner=runner, privilege=cfg.privilege_command)
    logger.info("Removed %d intermediate tree(s); %s kept", len(removed), ws.output_dir)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="zori-build", description="Zori OS live ISO builder")
    p.add_argument("--config", default=None, help="YAML build config")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug output on the console")

    ws_opts = argparse.ArgumentParser(add_help=False)
    ws_opts.add_argument("--output", default=None, metavar="DIR", help="Build root (default: ~/zori); image lands in DIR/out")

    sub = p.add_subparsers(dest="subcmd", metavar="{build,diagnose,clean,help}")

    sp = sub.add_parser("build", parents=[ws_opts], help="Build the ISO")
    sp.add_argument("--wipe", action="store_true", help="Clear an existing build root first")
    sp.add_argument("--desktop", choices=[d.value for d in Desktop], default=None)
    sp.add_argument("--installer-version", default=None, help="Installer git tag to build")
    sp.add_argument("--min-free-gb", type=float, default=None, help="Required free disk space")
    sp.add_argument("--dry-run", action="store_true", help="Log commands without running them")
    sp.set_defaults(func=cmd_build)

    sp = sub.add_parser(
        "diagnose", aliases=["diag", "debug"], parents=[ws_opts], help="Check the system and the last build"
    )
    sp.set_defaults(func=cmd_diagnose)

    sp = sub.add_parser("clean", parents=[ws_opts], help="Remove intermediate build trees")
    sp.add_argument("--all", action="store_true", help="Also remove installer sources and the releng tree")
    sp.set_defaults(func=cmd_clean)

    sp = sub.add_parser("help", help="Show this help")
    sp.add_argument("topic", nargs="?", default=None)
    sp.set_defaults(func=None)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    p = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    args = p.parse_args(argv)
    if args.subcmd is None:
        # No command means build.
        args = p.parse_args([*argv, "build"])

    if args.func is None:
        if args.topic:
            p.parse_args([args.topic, "--help"])
        p.print_help()
        return EXIT_OK

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        cfg = _config_from_args(args)
    except (FileNotFoundError, ValueError) as e:
        p.print_usage(sys.stderr)
        print(f"error: invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        return int(args.func(args, cfg))
    except KeyboardInterrupt as e:
        _fail(e)
        return BuildAborted.exit_code
    except BuildError as e:
        _fail(e)
        return e.exit_code
    except Exception as e:
        logger.exception("Unexpected failure")
        _fail(e)
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
