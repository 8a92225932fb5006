from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)


def copy_tree(src: str, dst: str, *, dry_run: bool = False) -> None:
    s = Path(src)
    d = Path(dst)
    if not s.exists():
        raise FileNotFoundError(src)

    if dry_run:
        logger.info("Would copy tree %s -> %s", str(s), str(d))
        return

    d.mkdir(parents=True, exist_ok=True)
    for item in sorted(s.rglob("*")):
        rel = item.relative_to(s)
        out = d / rel
        if item.is_symlink():
            out.parent.mkdir(parents=True, exist_ok=True)
            if out.is_symlink() or out.exists():
                out.unlink()
            os.symlink(os.readlink(item), out)
        elif item.is_dir():
            out.mkdir(parents=True, exist_ok=True)
        else:
            out.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(item, out)


def stable_hash(payload: Mapping[str, Any]) -> str:
    """sha256 of the canonical JSON form of ``payload``."""
    text = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def path_fingerprint(path: Path) -> Dict[str, Any]:
    """Identity of an output path, without following symlinks."""
    st = os.lstat(path)
    if os.path.islink(path):
        return {"type": "link", "target": os.readlink(path)}
    if path.is_dir():
        return {"type": "dir"}
    return {"type": "file", "size": st.st_size, "mtime_ns": st.st_mtime_ns}


def tree_fingerprint(root: Path) -> str:
    """Hash of relative paths, sizes and mtimes under ``root``."""
    entries = []
    for item in sorted(root.rglob("*")):
        rel = str(item.relative_to(root))
        entries.append([rel, path_fingerprint(item)])
    return stable_hash({"root": str(root), "entries": entries})


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()
