from __future__ import annotations

import logging

from ..artifacts import locate_artifact, write_checksums
from ..registry import BaseStage, BuildCtx

logger = logging.getLogger(__name__)


class LocateArtifactStep(BaseStage):
    step_id = "locate_artifact"
    requires = ("assemble_image",)

    def run(self, ctx: BuildCtx) -> None:
        if ctx.cfg.dry_run:
            logger.info("Dry run: no image to locate in %s", ctx.ws.output_dir)
            return
        # A skipped image stage keeps the start time of the run that built it.
        since = ctx.state.get("image_started_at") or ctx.started_at
        ctx.artifact = locate_artifact(ctx.ws.output_dir, since)
        write_checksums(ctx.ws.output_dir)
