from __future__ import annotations

import errno
import fcntl
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from .build_config import BuildConfig
from .build_state import ensure_build_defaults, load_build_state, save_build_state
from .errors import InsufficientSpace, WorkspaceBusy, WorkspaceError, WorkspaceViolation
from .lib.command import CommandRunner

logger = logging.getLogger(__name__)

LOG_NAME = "build.log"
LOCK_NAME = ".zori-build.lock"
STATE_NAME = "build_state.json"


def read_lock_owner(path: Path) -> Optional[int]:
    try:
        txt = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    try:
        return int(txt.split()[0])
    except (ValueError, IndexError):
        return None


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class WorkspaceLock:
    """Advisory lock file holding the owning process id.

    Ownership is an exclusive ``flock`` on the file, which the kernel drops
    when the holder dies; the pid inside is informational. A file nobody holds
    a lock on, empty or naming a dead process, is simply taken over. The lock
    is only ours if the path still names the inode we locked.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.held = False
        self._fd: Optional[int] = None

    def acquire(self) -> "WorkspaceLock":
        while True:
            fd = os.open(str(self.path), os.O_CREAT | os.O_RDWR, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                owner = read_lock_owner(self.path)
                who = f"running process {owner}" if owner is not None else "another build starting up"
                raise WorkspaceBusy(f"Workspace {self.path.parent} is locked by {who}") from None
            except BaseException:
                os.close(fd)
                raise

            if not self._names_inode(fd):
                # Released and unlinked by its previous owner while we waited.
                os.close(fd)
                continue

            previous = read_lock_owner(self.path)
            if previous is not None and previous != os.getpid():
                logger.warning("Taking over stale workspace lock %s (owner=%s)", self.path, previous)
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode("ascii"))
            os.fsync(fd)
            self._fd = fd
            self.held = True
            logger.debug("Acquired workspace lock %s", self.path)
            return self

    def _names_inode(self, fd: int) -> bool:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return False
        mine = os.fstat(fd)
        return (st.st_dev, st.st_ino) == (mine.st_dev, mine.st_ino)

    def release(self) -> None:
        if not self.held or self._fd is None:
            return
        fd, self._fd = self._fd, None
        self.held = False
        try:
            # Unlink before unlocking; a waiter then finds a new inode and retries.
            if self._names_inode(fd):
                self.path.unlink()
                logger.debug("Released workspace lock %s", self.path)
            else:
                logger.warning("Workspace lock %s no longer ours; leaving it", self.path)
        except FileNotFoundError:
            pass
        finally:
            os.close(fd)

    def __enter__(self) -> "WorkspaceLock":
        return self.acquire()

    def __exit__(self, *exc) -> None:
        self.release()


@dataclass(frozen=True)
class Workspace:
    root: Path
    lock: Optional[WorkspaceLock] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_path(cls, root: str | Path) -> "Workspace":
        return cls(root=Path(root).expanduser().absolute())

    @property
    def log_path(self) -> Path:
        return self.root / LOG_NAME

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_NAME

    @property
    def state_path(self) -> Path:
        return self.root / STATE_NAME

    @property
    def releng_dir(self) -> Path:
        return self.root / "releng"

    @property
    def airootfs_dir(self) -> Path:
        return self.releng_dir / "airootfs"

    @property
    def src_dir(self) -> Path:
        return self.root / "src"

    @property
    def work_dir(self) -> Path:
        return self.root / "work"

    @property
    def output_dir(self) -> Path:
        return self.root / "out"

    @property
    def subtrees(self) -> List[Path]:
        return [self.releng_dir, self.src_dir, self.work_dir, self.output_dir]

    def is_managed(self) -> bool:
        return self.state_path.exists()

    def resolve(self, rel: str | Path) -> Path:
        """Resolve ``rel`` inside the workspace, refusing anything that escapes it."""
        rp = Path(rel)
        candidate = (rp if rp.is_absolute() else self.root / rp).resolve()
        try:
            candidate.relative_to(self.root.resolve())
        except ValueError as e:
            raise WorkspaceViolation(f"Path escapes workspace: {rel}") from e
        return candidate

    def release(self) -> None:
        if self.lock is not None:
            self.lock.release()


def free_bytes(path: Path) -> int:
    """Free space on the filesystem holding ``path`` (or its nearest existing ancestor)."""
    p = path
    while not p.exists():
        if p.parent == p:
            break
        p = p.parent
    return shutil.disk_usage(p).free


def check_free_space(path: Path, minimum: int) -> int:
    free = free_bytes(path)
    if free < minimum:
        raise InsufficientSpace(
            f"Only {free / 1024 ** 3:.1f} GiB free under {path}; "
            f"at least {minimum / 1024 ** 3:.1f} GiB required"
        )
    return free


def remove_path(
    path: Path,
    *,
    runner: Optional[CommandRunner] = None,
    privilege: Sequence[str] = (),
) -> None:
    """Delete a file or tree; fall back to a privileged ``rm`` for root-owned trees."""
    if not os.path.lexists(path):
        return
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except PermissionError as e:
        if runner is None or not privilege:
            raise WorkspaceError(f"Cannot remove {path}: {e}") from e
        logger.info("Removing %s with elevated privileges", path)
        runner.run([*privilege, "rm", "-rf", "--one-file-system", str(path)])
    except OSError as e:
        if e.errno == errno.ENOENT:
            return
        raise WorkspaceError(f"Cannot remove {path}: {e}") from e


def prepare(
    config: BuildConfig,
    wipe_existing: bool,
    *,
    runner: Optional[CommandRunner] = None,
) -> Workspace:
    """Create or reuse the workspace root and take its lock.

    A non-empty directory is only reused when it is a workspace we created
    (it holds our state file); anything else needs ``wipe_existing``.
    """

    ws = Workspace.from_path(config.workspace_root)
    root = ws.root

    if root.exists() and not root.is_dir():
        raise WorkspaceError(f"Workspace root {root} exists and is not a directory")

    non_empty = root.exists() and any(root.iterdir())
    if non_empty and not wipe_existing and not ws.is_managed():
        raise WorkspaceError(
            f"Workspace root {root} is not empty and was not created by this tool; "
            "use --wipe to clear it"
        )

    if not wipe_existing:
        check_free_space(root, config.min_free_bytes)

    root.mkdir(parents=True, exist_ok=True)
    lock = WorkspaceLock(ws.lock_path).acquire()
    try:
        if wipe_existing and non_empty:
            logger.warning("Wiping existing workspace %s", root)
            for entry in sorted(root.iterdir()):
                if entry.name == LOCK_NAME:
                    continue
                remove_path(entry, runner=runner, privilege=config.privilege_command)
        if wipe_existing:
            check_free_space(root, config.min_free_bytes)

        for d in ws.subtrees:
            d.mkdir(parents=True, exist_ok=True)
        save_build_state(ws.state_path, ensure_build_defaults(load_build_state(ws.state_path)))
        ws.log_path.touch(exist_ok=True)
    except BaseException:
        lock.release()
        raise

    logger.info("Workspace ready at %s (wiped=%s)", root, bool(wipe_existing and non_empty))
    return Workspace(root=root, lock=lock)


def teardown(
    workspace: Workspace,
    keep_artifacts: bool,
    *,
    runner: Optional[CommandRunner] = None,
    privilege: Sequence[str] = (),
) -> List[Path]:
    """Remove intermediate trees. The output tree is never touched."""

    doomed = [workspace.work_dir]
    if not keep_artifacts:
        doomed += [workspace.src_dir, workspace.releng_dir]

    removed: List[Path] = []
    for p in doomed:
        if os.path.lexists(p):
            remove_path(p, runner=runner, privilege=privilege)
            removed.append(p)
            logger.info("Removed %s", p)
    return removed
