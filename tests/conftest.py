"""Shared fixtures for the builder tests.

External tools (git, cmake, make, mkarchiso) are replaced by small shell
scripts placed first on PATH. Each appends its command line to the file named
by $FAKE_CALLS so tests can assert what ran.
"""

import logging
import os
import stat
import time
from pathlib import Path

import pytest
import yaml

from zori_builder.build_config import BuildConfig

FAKE_GIT = """#!/bin/sh
echo "git $*" >> "$FAKE_CALLS"
for last; do :; done
mkdir -p "$last/.git"
echo "Cloning into '$last'..."
"""

FAKE_CMAKE = """#!/bin/sh
echo "cmake $*" >> "$FAKE_CALLS"
echo "-- Configuring done"
"""

FAKE_MAKE = """#!/bin/sh
echo "make $*" >> "$FAKE_CALLS"
dest=""
for a in "$@"; do
  case "$a" in DESTDIR=*) dest="${a#DESTDIR=}";; esac
done
if [ -n "$FAKE_MAKE_PIDFILE" ]; then
  echo $$ > "$FAKE_MAKE_PIDFILE"
  exec sleep 60
fi
if [ -n "$FAKE_MAKE_FAIL" ]; then
  echo "make: *** [Makefile:42] Error 1" >&2
  exit 2
fi
if [ -n "$dest" ]; then
  mkdir -p "$dest/usr/bin"
  echo "calamares" > "$dest/usr/bin/calamares"
fi
echo "[100%] Built target calamares"
"""

FAKE_MKARCHISO = """#!/bin/sh
echo "mkarchiso $*" >> "$FAKE_CALLS"
out=""
while [ $# -gt 0 ]; do
  case "$1" in
    -o) out="$2"; shift 2;;
    -w) shift 2;;
    *) shift;;
  esac
done
mkdir -p "$out"
printf 'fake iso %s\\n' "$(date +%s%N)" > "$out/zori-2026.10.19-x86_64.iso"
echo "Done! ISO written"
"""


def _write_exe(path: Path, body: str) -> None:
    path.write_text(body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


@pytest.fixture(autouse=True)
def _reset_console_logging():
    """Drop the console handler so it never outlives a test's captured stderr."""
    yield
    root = logging.getLogger()
    handler = getattr(root, "_zori_console", None)
    if handler is not None:
        root.removeHandler(handler)
        delattr(root, "_zori_console")


@pytest.fixture
def fake_tools(tmp_path, monkeypatch):
    """Put fake build tools first on PATH; returns the calls log path."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name, body in {
        "git": FAKE_GIT,
        "cmake": FAKE_CMAKE,
        "make": FAKE_MAKE,
        "mkarchiso": FAKE_MKARCHISO,
    }.items():
        _write_exe(bin_dir / name, body)

    calls = tmp_path / "calls.log"
    calls.touch()
    monkeypatch.setenv("FAKE_CALLS", str(calls))
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.delenv("FAKE_MAKE_FAIL", raising=False)
    monkeypatch.delenv("FAKE_MAKE_PIDFILE", raising=False)
    return calls


@pytest.fixture
def releng_source(tmp_path):
    src = tmp_path / "releng-src"
    (src / "airootfs/etc").mkdir(parents=True)
    (src / "profiledef.sh").write_text('iso_name="archlinux"\n', encoding="utf-8")
    (src / "packages.x86_64").write_text("base\nlinux\nlinux-firmware\n", encoding="utf-8")
    (src / "airootfs/etc/hostname").write_text("archiso\n", encoding="utf-8")
    return src


@pytest.fixture
def raw_config(tmp_path, releng_source):
    return {
        "paths": {"workspace": str(tmp_path / "ws"), "releng_source": str(releng_source)},
        "privilege": {"command": []},
        "limits": {"min_free_gb": 0, "retry_backoff": 0},
        "installer": {"jobs": 2},
    }


@pytest.fixture
def make_config(raw_config):
    def _make(**over) -> BuildConfig:
        raw = dict(raw_config)
        raw.update(over)
        return BuildConfig(raw=raw)

    return _make


@pytest.fixture
def config_file(tmp_path, raw_config):
    path = tmp_path / "build.yaml"
    path.write_text(yaml.safe_dump(raw_config), encoding="utf-8")
    return path


def read_calls(calls: Path) -> list:
    return [line for line in calls.read_text(encoding="utf-8").splitlines() if line]


def _alive(pid: int) -> bool:
    stat_path = Path(f"/proc/{pid}/stat")
    if stat_path.exists():
        try:
            state = stat_path.read_text().rsplit(")", 1)[1].split()[0]
        except (OSError, IndexError):
            return False
        return state not in ("Z", "X")
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def wait_dead(pid: int, timeout: float = 5.0) -> bool:
    """Poll until ``pid`` is gone or a zombie."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not _alive(pid):
            return True
        time.sleep(0.05)
    return not _alive(pid)
