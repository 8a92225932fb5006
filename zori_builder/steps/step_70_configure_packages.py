from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..lib.manifests import load_package_list
from ..registry import BaseStage, BuildCtx

logger = logging.getLogger(__name__)

PACKAGES_FILE = "packages.x86_64"
BLOCK_BEGIN = "# >>> zori-build managed packages >>>"
BLOCK_END = "# <<< zori-build managed packages <<<"


def strip_managed_block(text: str) -> str:
    out: List[str] = []
    inside = False
    for line in text.splitlines():
        if line.strip() == BLOCK_BEGIN:
            inside = True
            continue
        if line.strip() == BLOCK_END:
            inside = False
            continue
        if not inside:
            out.append(line)
    while out and not out[-1].strip():
        out.pop()
    return "\n".join(out)


def package_selection(ctx: BuildCtx) -> List[str]:
    seen = set()
    selected: List[str] = []
    for pkg in [*load_package_list("common"), *load_package_list(ctx.cfg.desktop.value), *ctx.cfg.extra_packages]:
        if pkg not in seen:
            seen.add(pkg)
            selected.append(pkg)
    return selected


class ConfigurePackagesStep(BaseStage):
    """Add the desktop and application packages to the image's package list.

    The additions live in one delimited block which is replaced on every run,
    so re-running never duplicates entries.
    """

    step_id = "configure_packages"
    requires = ("configure_branding",)
    idempotent = True

    def inputs(self, ctx: BuildCtx) -> Dict[str, Any]:
        return {"desktop": ctx.cfg.desktop.value, "packages": package_selection(ctx)}

    def outputs(self, ctx: BuildCtx) -> List[Path]:
        return [ctx.ws.releng_dir / PACKAGES_FILE]

    def run(self, ctx: BuildCtx) -> None:
        path = ctx.ws.resolve(ctx.ws.releng_dir / PACKAGES_FILE)
        if ctx.cfg.dry_run:
            logger.info("Would add %d packages to %s", len(package_selection(ctx)), path)
            return
        base = strip_managed_block(path.read_text(encoding="utf-8")) if path.exists() else ""
        packages = package_selection(ctx)
        block = "\n".join([BLOCK_BEGIN, *packages, BLOCK_END])
        path.write_text((base + "\n\n" if base else "") + block + "\n", encoding="utf-8")
        logger.info("Added %d packages for the %s desktop", len(packages), ctx.cfg.desktop.value)
