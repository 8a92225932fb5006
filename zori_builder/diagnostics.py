from __future__ import annotations

import collections
import getpass
import logging
import os
import platform
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .build_config import BuildConfig
from .build_state import load_build_state
from .workspace import Workspace, free_bytes, pid_alive, read_lock_owner

logger = logging.getLogger(__name__)

# Not required for a build, but worth knowing about.
INFORMATIVE_TOOLS = ["pacman", "go", "sudo"]


@dataclass(frozen=True)
class ToolStatus:
    name: str
    path: Optional[str]
    required: bool = True

    @property
    def found(self) -> bool:
        return self.path is not None


@dataclass
class DiagnosticsReport:
    system: str
    distribution: str
    user: str
    uid: int
    cwd: str
    tools: List[ToolStatus]
    free_bytes: int
    min_free_bytes: int
    releng_source: str
    releng_present: bool
    workspace_root: str
    workspace_exists: bool
    log_path: str
    lock_owner: Optional[int] = None
    lock_owner_alive: bool = False
    last_status: Optional[str] = None
    last_failed_stage: Optional[str] = None
    log_tail: List[str] = field(default_factory=list)

    @property
    def missing_tools(self) -> List[str]:
        return [t.name for t in self.tools if t.required and not t.found]

    @property
    def ready(self) -> bool:
        return not self.missing_tools and self.releng_present and self.free_bytes >= self.min_free_bytes

    def render(self) -> str:
        def mark(ok: bool) -> str:
            return "✓" if ok else "✗"

        gib = 1024 ** 3
        lines = [
            "=== Zori OS Build Diagnostics ===",
            f"System: {self.system}",
            f"Distribution: {self.distribution}",
            f"User: {self.user} (UID: {self.uid})",
            f"Working directory: {self.cwd}",
            f"Free space: {self.free_bytes / gib:.1f} GiB "
            f"(minimum {self.min_free_bytes / gib:.1f} GiB) {mark(self.free_bytes >= self.min_free_bytes)}",
            "",
            "Dependencies check:",
        ]
        for t in self.tools:
            suffix = "" if t.required else " (optional)"
            lines.append(f"{mark(t.found)} {t.name}: {t.path or 'NOT FOUND'}{suffix}")
        lines += [
            "",
            "Key paths:",
            f"{mark(self.releng_present)} archiso releng config: {self.releng_source}",
            f"{mark(self.workspace_exists)} Workspace: {self.workspace_root}",
        ]
        if self.lock_owner is not None:
            state = "running" if self.lock_owner_alive else "stale"
            lines.append(f"! Workspace locked by pid {self.lock_owner} ({state})")
        if self.last_status:
            extra = f" at {self.last_failed_stage}" if self.last_failed_stage else ""
            lines.append(f"Last build: {self.last_status}{extra}")
        if self.log_tail:
            lines += ["", f"Last {len(self.log_tail)} log entries ({self.log_path}):", *self.log_tail]
        else:
            lines.append(f"✗ No log file yet ({self.log_path})")
        return "\n".join(lines)


def _distribution(os_release: Path = Path("/etc/os-release")) -> str:
    try:
        for line in os_release.read_text(encoding="utf-8").splitlines():
            if line.startswith("PRETTY_NAME="):
                return line.split("=", 1)[1].strip().strip('"')
    except OSError:
        pass
    return "Unknown"


def _user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return str(os.geteuid())


def _tail(path: Path, n: int) -> List[str]:
    if not path.is_file():
        return []
    with path.open("r", encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in collections.deque(f, maxlen=n)]


def diagnose(cfg: BuildConfig, *, tail_lines: int = 10) -> DiagnosticsReport:
    """Inspect the host and the last run without touching anything."""

    ws = Workspace.from_path(cfg.workspace_root)
    tools = [ToolStatus(t, shutil.which(t)) for t in cfg.required_tools]
    tools += [ToolStatus(t, shutil.which(t), required=False) for t in INFORMATIVE_TOOLS if t not in cfg.required_tools]

    lock_owner = read_lock_owner(ws.lock_path)

    last_status = last_failed = None
    if ws.state_path.is_file():
        try:
            last = load_build_state(ws.state_path).get("last_report") or {}
            last_status = last.get("status")
            last_failed = last.get("failed_stage")
        except ValueError as e:
            logger.debug("Unreadable build state %s: %s", ws.state_path, e)
            last_status = "unknown (state file unreadable)"

    return DiagnosticsReport(
        system=" ".join(platform.uname()),
        distribution=_distribution(),
        user=_user(),
        uid=os.geteuid(),
        cwd=os.getcwd(),
        tools=tools,
        free_bytes=free_bytes(ws.root),
        min_free_bytes=cfg.min_free_bytes,
        releng_source=str(cfg.releng_source),
        releng_present=cfg.releng_source.is_dir(),
        workspace_root=str(ws.root),
        workspace_exists=ws.root.is_dir(),
        log_path=str(ws.log_path),
        lock_owner=lock_owner,
        lock_owner_alive=lock_owner is not None and pid_alive(lock_owner),
        last_status=last_status,
        last_failed_stage=last_failed,
        log_tail=_tail(ws.log_path, tail_lines),
    )
