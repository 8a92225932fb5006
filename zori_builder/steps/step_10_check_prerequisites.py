from __future__ import annotations

import logging
import os
import shutil

from ..errors import PrerequisiteMissing
from ..registry import BaseStage, BuildCtx

logger = logging.getLogger(__name__)


class CheckPrerequisitesStep(BaseStage):
    """Verify host tools and the releng profile before anything is written."""

    step_id = "check_prerequisites"

    def run(self, ctx: BuildCtx) -> None:
        cfg = ctx.cfg
        missing = [t for t in cfg.required_tools if shutil.which(t) is None]
        problems = []
        if missing:
            problems.append(f"missing tools: {', '.join(missing)}")
        if not cfg.releng_source.is_dir():
            problems.append(f"archiso releng profile not found at {cfg.releng_source}")
        if problems:
            raise PrerequisiteMissing("; ".join(problems))

        if os.geteuid() == 0:
            logger.warning("Running as root is not recommended; run as a regular user with sudo")
        logger.info("Prerequisites check passed (%s)", ", ".join(cfg.required_tools))
