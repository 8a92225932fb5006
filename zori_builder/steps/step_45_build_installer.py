from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..registry import BaseStage, BuildCtx
from ..workspace import remove_path
from .step_40_fetch_installer import installer_src_dir

logger = logging.getLogger(__name__)


class BuildInstallerStep(BaseStage):
    """Configure, compile and stage the installer into the live root filesystem."""

    step_id = "build_installer"
    requires = ("copy_releng", "fetch_installer")
    idempotent = True

    def inputs(self, ctx: BuildCtx) -> Dict[str, Any]:
        return {"version": ctx.cfg.installer_version, "cmake_args": ctx.cfg.installer_cmake_args}

    def outputs(self, ctx: BuildCtx) -> List[Path]:
        return [ctx.ws.airootfs_dir / "usr/bin/calamares"]

    def run(self, ctx: BuildCtx) -> None:
        build_dir = installer_src_dir(ctx) / "build"
        if not ctx.cfg.dry_run:
            if build_dir.exists():
                logger.warning("Removing previous installer build directory")
                remove_path(build_dir)
            build_dir.mkdir(parents=True)

        logger.info("Configuring installer build")
        ctx.runner.run(["cmake", "..", *ctx.cfg.installer_cmake_args], cwd=str(build_dir))

        logger.info("Building installer with %d jobs (this may take a while)", ctx.cfg.make_jobs)
        ctx.runner.run(["make", f"-j{ctx.cfg.make_jobs}"], cwd=str(build_dir))

        logger.info("Installing installer into %s", ctx.ws.airootfs_dir)
        ctx.runner.run(["make", "install", f"DESTDIR={ctx.ws.airootfs_dir}"], cwd=str(build_dir))
