from __future__ import annotations

from .. import workspace
from ..registry import BaseStage, BuildCtx


class PrepareWorkspaceStep(BaseStage):
    step_id = "prepare_workspace"
    requires = ("check_prerequisites",)

    def run(self, ctx: BuildCtx) -> None:
        ctx.workspace = workspace.prepare(ctx.cfg, ctx.wipe, runner=ctx.runner)
