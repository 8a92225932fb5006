from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..registry import BaseStage, BuildCtx
from ..workspace import remove_path

logger = logging.getLogger(__name__)


def installer_src_dir(ctx: BuildCtx) -> Path:
    return ctx.ws.src_dir / "calamares"


class FetchInstallerStep(BaseStage):
    """Shallow-clone the pinned installer release. Network bound, so retried."""

    step_id = "fetch_installer"
    requires = ("prepare_workspace",)
    idempotent = True
    retryable = True

    def inputs(self, ctx: BuildCtx) -> Dict[str, Any]:
        return {"repo": ctx.cfg.installer_repo, "version": ctx.cfg.installer_version}

    def outputs(self, ctx: BuildCtx) -> List[Path]:
        return [installer_src_dir(ctx) / ".git"]

    def run(self, ctx: BuildCtx) -> None:
        dest = installer_src_dir(ctx)
        # A half-finished clone from a failed attempt would make git refuse.
        remove_path(dest)
        logger.info("Cloning installer %s", ctx.cfg.installer_version)
        ctx.runner.run(
            [
                "git",
                "clone",
                "--branch",
                ctx.cfg.installer_version,
                "--depth",
                "1",
                ctx.cfg.installer_repo,
                str(dest),
            ],
            cwd=str(ctx.ws.src_dir),
        )
