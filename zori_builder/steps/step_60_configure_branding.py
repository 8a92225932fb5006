from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..lib.manifests import load_branding, load_installer_settings
from ..registry import BaseStage, BuildCtx

logger = logging.getLogger(__name__)


def render_settings(ctx: BuildCtx) -> Dict[str, Any]:
    settings = load_installer_settings()
    settings["branding"] = ctx.cfg.distro_name
    return settings


def render_branding(ctx: BuildCtx) -> Dict[str, Any]:
    cfg = ctx.cfg
    branding = load_branding()
    branding["componentName"] = cfg.distro_name
    short = cfg.product_name.split()[0]
    strings = branding.setdefault("strings", {})
    strings.update(
        {
            "productName": cfg.product_name,
            "shortProductName": short,
            "version": cfg.distro_version,
            "shortVersion": cfg.distro_version,
            "versionedName": f"{cfg.product_name} {cfg.distro_version}",
            "shortVersionedName": f"{short} {cfg.distro_version}",
            "bootloaderEntryName": short,
        }
    )
    return branding


def _write_yaml(path: Path, data: Dict[str, Any]) -> None:
    import yaml

    path.parent.mkdir(parents=True, exist_ok=True)
    text = "---\n" + yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
    path.write_text(text, encoding="utf-8")


class ConfigureBrandingStep(BaseStage):
    """Render the installer's settings.conf and branding descriptor."""

    step_id = "configure_branding"
    requires = ("configure_services",)
    idempotent = True

    def _paths(self, ctx: BuildCtx) -> List[Path]:
        base = ctx.ws.airootfs_dir / "etc/calamares"
        return [base / "settings.conf", base / "branding" / ctx.cfg.distro_name / "branding.desc"]

    def inputs(self, ctx: BuildCtx) -> Dict[str, Any]:
        return {"settings": render_settings(ctx), "branding": render_branding(ctx)}

    def outputs(self, ctx: BuildCtx) -> List[Path]:
        return self._paths(ctx)

    def run(self, ctx: BuildCtx) -> None:
        settings_path, branding_path = (ctx.ws.resolve(p) for p in self._paths(ctx))
        if ctx.cfg.dry_run:
            logger.info("Would write %s and %s", settings_path, branding_path)
            return
        _write_yaml(settings_path, render_settings(ctx))
        _write_yaml(branding_path, render_branding(ctx))
        logger.info("Installer branding '%s' written", ctx.cfg.distro_name)
