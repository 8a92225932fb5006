from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List

from ..artifacts import ISO_PATTERN
from ..errors import WorkspaceError
from ..registry import BaseStage, BuildCtx

logger = logging.getLogger(__name__)


class AssembleImageStep(BaseStage):
    """Run mkarchiso on the prepared profile, writing the ISO to the output tree."""

    step_id = "assemble_image"
    requires = ("configure_packages",)
    idempotent = True

    def inputs(self, ctx: BuildCtx) -> Dict[str, Any]:
        return {"distro": ctx.cfg.distro_name, "privilege": ctx.cfg.privilege_command}

    def outputs(self, ctx: BuildCtx) -> List[Path]:
        return sorted(ctx.ws.output_dir.glob(ISO_PATTERN))

    def run(self, ctx: BuildCtx) -> None:
        ws = ctx.ws
        ws.output_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(ws.output_dir, os.W_OK):
            raise WorkspaceError(f"Output directory {ws.output_dir} is not writable")

        started = time.time()
        logger.info("Starting ISO build (this may take 30+ minutes)")
        ctx.runner.run(
            [
                *ctx.cfg.privilege_command,
                "mkarchiso",
                "-v",
                "-w",
                str(ws.work_dir),
                "-o",
                str(ws.output_dir),
                str(ws.releng_dir),
            ],
            cwd=str(ws.releng_dir),
            timeout=ctx.cfg.image_timeout,
        )
        if not ctx.cfg.dry_run:
            ctx.state["image_started_at"] = started
        logger.info("ISO build completed")
