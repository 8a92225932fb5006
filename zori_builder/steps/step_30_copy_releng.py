from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..lib.assets import copy_tree, tree_fingerprint
from ..registry import BaseStage, BuildCtx

logger = logging.getLogger(__name__)


class CopyRelengStep(BaseStage):
    """Copy the archiso releng profile into the workspace."""

    step_id = "copy_releng"
    requires = ("prepare_workspace",)
    idempotent = True

    def inputs(self, ctx: BuildCtx) -> Dict[str, Any]:
        src = ctx.cfg.releng_source
        return {"source": str(src), "tree": tree_fingerprint(src)}

    def outputs(self, ctx: BuildCtx) -> List[Path]:
        return [ctx.ws.releng_dir / "profiledef.sh", ctx.ws.airootfs_dir / "etc/skel"]

    def run(self, ctx: BuildCtx) -> None:
        ws = ctx.ws
        copy_tree(str(ctx.cfg.releng_source), str(ws.releng_dir), dry_run=ctx.cfg.dry_run)
        if ctx.cfg.dry_run:
            return
        (ws.airootfs_dir / "etc/skel").mkdir(parents=True, exist_ok=True)
        logger.info("Releng profile copied to %s", ws.releng_dir)
