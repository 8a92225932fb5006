from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ..registry import BaseStage, BuildCtx

logger = logging.getLogger(__name__)

SYSTEMD_UNITS = "/usr/lib/systemd/system"


def _links(ctx: BuildCtx) -> List[Tuple[str, Path]]:
    """(target, link) pairs under the live image's /etc/systemd/system."""
    unit_dir = ctx.ws.airootfs_dir / "etc/systemd/system"
    dm = ctx.cfg.desktop.display_manager
    return [
        (f"{SYSTEMD_UNITS}/graphical.target", unit_dir / "default.target"),
        (f"{SYSTEMD_UNITS}/{dm}.service", unit_dir / "display-manager.service"),
        (
            f"{SYSTEMD_UNITS}/NetworkManager.service",
            unit_dir / "multi-user.target.wants/NetworkManager.service",
        ),
    ]


class ConfigureServicesStep(BaseStage):
    """Boot to the graphical target with the desktop's display manager and networking."""

    step_id = "configure_services"
    requires = ("build_installer",)
    idempotent = True

    def inputs(self, ctx: BuildCtx) -> Dict[str, Any]:
        return {"links": [[t, str(l)] for t, l in _links(ctx)]}

    def outputs(self, ctx: BuildCtx) -> List[Path]:
        return [l for _, l in _links(ctx)]

    def run(self, ctx: BuildCtx) -> None:
        for target, link in _links(ctx):
            if not ctx.cfg.dry_run:
                ctx.ws.resolve(link.parent).mkdir(parents=True, exist_ok=True)
            ctx.runner.run(["ln", "-sfn", target, str(link)])
        logger.info("Enabled graphical.target, %s and NetworkManager", ctx.cfg.desktop.display_manager)
