from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List

from .errors import ArtifactNotProduced
from .lib.assets import sha256_file

logger = logging.getLogger(__name__)

ISO_PATTERN = "*.iso"
SUMS_NAME = "SHA256SUMS"
# Filesystem timestamp granularity (FAT rounds to 2s).
MTIME_SLACK = 2.0


@dataclass(frozen=True)
class Artifact:
    path: str
    size: int
    sha256: str
    mtime: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _candidates(output_dir: Path, pattern: str) -> List[Path]:
    return [p for p in output_dir.glob(pattern) if p.is_file()]


def locate_artifact(output_dir: Path, since: float, pattern: str = ISO_PATTERN) -> Artifact:
    """Find the image produced by the build that started at ``since``.

    With several matches the most recently modified wins. A newest match older
    than ``since`` is a leftover from an earlier run, not this run's output.
    """

    matches = _candidates(output_dir, pattern) if output_dir.is_dir() else []
    if not matches:
        raise ArtifactNotProduced(f"No {pattern} found in {output_dir}")

    newest = max(matches, key=lambda p: p.stat().st_mtime)
    mtime = newest.stat().st_mtime
    if mtime < since - MTIME_SLACK:
        raise ArtifactNotProduced(
            f"Newest image {newest.name} predates this build (modified before run start); "
            "the image tool did not produce a new artifact"
        )
    if len(matches) > 1:
        logger.warning(
            "%d images in %s; using most recent %s", len(matches), output_dir, newest.name
        )

    art = Artifact(
        path=str(newest),
        size=newest.stat().st_size,
        sha256=sha256_file(newest),
        mtime=mtime,
    )
    logger.info("Artifact %s (%.1f MiB) sha256=%s", art.path, art.size / 1024 ** 2, art.sha256)
    return art


def write_checksums(output_dir: Path, pattern: str = ISO_PATTERN) -> Path:
    """Write SHA256SUMS for every image in ``output_dir``."""
    sums_path = output_dir / SUMS_NAME
    lines = []
    for p in sorted(_candidates(output_dir, pattern)):
        lines.append(f"{sha256_file(p)}  {p.name}")
    sums_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return sums_path
