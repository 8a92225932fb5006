from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List


def _assets_root() -> Path:
    # zori_builder/lib/manifests.py -> zori_builder/assets
    return Path(__file__).resolve().parents[1] / "assets"


def load_yaml_rel(rel_path: str) -> Dict[str, Any]:
    """Load a YAML asset relative to the package assets directory."""
    import yaml

    p = _assets_root() / rel_path.lstrip("/")
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Manifest must be a mapping/dict: {p}")
    return data


def load_package_list(name: str) -> List[str]:
    data = load_yaml_rel(f"packages/{name}.yaml")
    packages: List[str] = []
    for group in data.get("groups") or []:
        packages.extend(str(p) for p in (group.get("packages") or []))
    return packages


def load_installer_settings() -> Dict[str, Any]:
    return load_yaml_rel("calamares/settings.yaml")


def load_branding() -> Dict[str, Any]:
    return load_yaml_rel("calamares/branding.yaml")
