from __future__ import annotations

import copy
import enum
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

GIB = 1024 ** 3

DEFAULT_RELENG_SOURCE = "/usr/share/archiso/configs/releng"
DEFAULT_INSTALLER_REPO = "https://github.com/calamares/calamares.git"
DEFAULT_INSTALLER_VERSION = "v3.3.9"
DEFAULT_REQUIRED_TOOLS = ["git", "cmake", "make", "mkarchiso"]


class Desktop(str, enum.Enum):
    PLASMA = "plasma"
    GNOME = "gnome"
    XFCE = "xfce"

    @property
    def display_manager(self) -> str:
        return _DISPLAY_MANAGERS[self]


_DISPLAY_MANAGERS = {
    Desktop.PLASMA: "sddm",
    Desktop.GNOME: "gdm",
    Desktop.XFCE: "lightdm",
}


@dataclass(frozen=True)
class BuildConfig:
    raw: Dict[str, Any] = field(default_factory=dict)

    def _section(self, name: str) -> Dict[str, Any]:
        sec = self.raw.get(name) or {}
        if not isinstance(sec, dict):
            raise ValueError(f"{name} must be a mapping")
        return sec

    @property
    def distro_name(self) -> str:
        return str(self._section("distro").get("name") or "zori")

    @property
    def product_name(self) -> str:
        return str(self._section("distro").get("product_name") or "Zori OS")

    @property
    def distro_version(self) -> str:
        return str(self._section("distro").get("version") or "1.0")

    @property
    def workspace_root(self) -> Path:
        p = self._section("paths").get("workspace")
        if p:
            return Path(str(p)).expanduser().absolute()
        return Path.home() / self.distro_name

    @property
    def releng_source(self) -> Path:
        return Path(str(self._section("paths").get("releng_source") or DEFAULT_RELENG_SOURCE))

    @property
    def desktop(self) -> Desktop:
        return Desktop(str(self.raw.get("desktop") or Desktop.PLASMA.value))

    @property
    def installer_repo(self) -> str:
        return str(self._section("installer").get("repo") or DEFAULT_INSTALLER_REPO)

    @property
    def installer_version(self) -> str:
        return str(self._section("installer").get("version") or DEFAULT_INSTALLER_VERSION)

    @property
    def installer_cmake_args(self) -> List[str]:
        args = self._section("installer").get("cmake_args")
        if args is None:
            return [
                "-DCMAKE_BUILD_TYPE=Release",
                "-DCMAKE_INSTALL_PREFIX=/usr",
                "-DWITH_PYTHONQT=OFF",
            ]
        return [str(a) for a in args]

    @property
    def make_jobs(self) -> int:
        return int(self._section("installer").get("jobs") or os.cpu_count() or 1)

    @property
    def extra_packages(self) -> List[str]:
        return [str(p) for p in (self._section("packages").get("extra") or [])]

    @property
    def required_tools(self) -> List[str]:
        tools = self._section("prerequisites").get("tools")
        if tools is None:
            return list(DEFAULT_REQUIRED_TOOLS)
        return [str(t) for t in tools]

    @property
    def min_free_bytes(self) -> int:
        gb = self._section("limits").get("min_free_gb")
        if gb is None:
            gb = 20
        return int(float(gb) * GIB)

    @property
    def command_timeout(self) -> float:
        return float(self._section("limits").get("command_timeout") or 3600)

    @property
    def image_timeout(self) -> float:
        return float(self._section("limits").get("image_timeout") or 4 * 3600)

    @property
    def retry_backoff(self) -> float:
        v = self._section("limits").get("retry_backoff")
        return 2.0 if v is None else float(v)

    @property
    def privilege_command(self) -> List[str]:
        priv = self._section("privilege")
        if "command" in priv:
            return [str(a) for a in (priv.get("command") or [])]
        # mkarchiso must run as root.
        return [] if os.geteuid() == 0 else ["sudo"]

    @property
    def dry_run(self) -> bool:
        return bool(self.raw.get("dry_run", False))

    def validate(self) -> "BuildConfig":
        """Read every typed property once so bad values fail at load time."""
        for name in _TYPED_PROPERTIES:
            try:
                getattr(self, name)
            except (TypeError, ValueError) as e:
                raise ValueError(f"invalid value for {name}: {e}") from e
        return self


_TYPED_PROPERTIES = [
    name for name, attr in vars(BuildConfig).items() if isinstance(attr, property)
]


def _deep_merge(base: Dict[str, Any], over: Mapping[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in over.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def load_build_config(path: str) -> BuildConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("build config must be YAML")

    import yaml

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{p.name} must contain a mapping/object")

    return BuildConfig(raw=raw).validate()


def with_overrides(
    cfg: BuildConfig,
    *,
    workspace: Optional[str] = None,
    desktop: Optional[str] = None,
    installer_version: Optional[str] = None,
    min_free_gb: Optional[float] = None,
    dry_run: Optional[bool] = None,
) -> BuildConfig:
    """Return a new config with CLI-level overrides applied on top of ``cfg``."""

    over: Dict[str, Any] = {}
    if workspace:
        over.setdefault("paths", {})["workspace"] = workspace
    if desktop:
        # Validate early so a bad value is an argument error, not a stage failure.
        over["desktop"] = Desktop(desktop).value
    if installer_version:
        over.setdefault("installer", {})["version"] = installer_version
    if min_free_gb is not None:
        over.setdefault("limits", {})["min_free_gb"] = min_free_gb
    if dry_run:
        over["dry_run"] = True
    return BuildConfig(raw=_deep_merge(cfg.raw, over)).validate()
