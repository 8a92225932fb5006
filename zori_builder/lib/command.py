from __future__ import annotations

import collections
import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, List, Mapping, Optional, Sequence

from ..errors import StageFailed, TimedOut

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str
    duration: float = 0.0
    timed_out: bool = False


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def _tail(lines: Sequence[str], n: int = STDERR_TAIL_LINES) -> str:
    return "\n".join(lines[-n:])


class CommandRunner:
    """Run external commands with streamed logging, timeouts and group kill.

    Every child gets its own session so the whole process tree can be
    signalled on timeout or interruption. stdout and stderr are drained by
    reader threads which log each line as it arrives, so partial output is in
    the log even if the child hangs or we are killed.
    """

    def __init__(
        self,
        *,
        dry_run: bool = False,
        default_timeout: Optional[float] = None,
        grace_period: float = 5.0,
        excerpt_lines: int = 40,
    ) -> None:
        self.dry_run = dry_run
        self.default_timeout = default_timeout
        self.grace_period = grace_period
        self._recent: collections.deque[str] = collections.deque(maxlen=excerpt_lines)
        self._proc: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()

    def clear_excerpt(self) -> None:
        self._recent.clear()

    def excerpt(self) -> str:
        return "\n".join(self._recent)

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
        check: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> CmdResult:
        argv_list = [str(a) for a in argv]
        cmdline = _fmt_argv(argv_list)
        logger.info("CMD %s", cmdline)
        if cwd:
            logger.debug("CWD %s", cwd)

        if self.dry_run:
            return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

        limit = timeout if timeout is not None else self.default_timeout
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv_list,
                cwd=cwd,
                env=dict(os.environ, **(env or {})),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise StageFailed(f"Command not found: {argv_list[0]}", argv=argv_list) from e

        out_lines: List[str] = []
        err_lines: List[str] = []
        readers = [
            threading.Thread(target=self._drain, args=(proc.stdout, "stdout", out_lines), daemon=True),
            threading.Thread(target=self._drain, args=(proc.stderr, "stderr", err_lines), daemon=True),
        ]
        for t in readers:
            t.start()

        with self._lock:
            self._proc = proc

        try:
            try:
                returncode = proc.wait(timeout=limit)
            except subprocess.TimeoutExpired:
                self._kill_group(proc)
                for t in readers:
                    t.join()
                duration = time.monotonic() - started
                logger.error("TIMEOUT after %.1fs: %s", duration, cmdline)
                raise TimedOut(
                    f"Command timed out after {limit:g}s: {cmdline}",
                    argv=argv_list,
                    returncode=proc.returncode,
                    stderr_tail=_tail(err_lines),
                ) from None
            except BaseException:
                # KeyboardInterrupt / BuildAborted: never leave the tree running.
                self._kill_group(proc)
                for t in readers:
                    t.join(timeout=self.grace_period)
                logger.warning("Interrupted; terminated %s", cmdline)
                raise
            for t in readers:
                t.join()
        finally:
            with self._lock:
                self._proc = None

        duration = time.monotonic() - started
        logger.info("EXIT %s after %.1fs: %s", returncode, duration, argv_list[0])

        result = CmdResult(
            argv=argv_list,
            returncode=returncode,
            stdout="\n".join(out_lines),
            stderr="\n".join(err_lines),
            duration=duration,
        )
        if check and returncode != 0:
            raise StageFailed(
                f"Command failed ({returncode}): {cmdline}",
                argv=argv_list,
                returncode=returncode,
                stderr_tail=_tail(err_lines),
            )
        return result

    def terminate(self) -> None:
        """Kill the running child's process group, if any."""
        with self._lock:
            proc = self._proc
        if proc is not None:
            self._kill_group(proc)

    def _drain(self, stream: Optional[IO[str]], name: str, sink: List[str]) -> None:
        if stream is None:
            return
        with stream:
            for raw in stream:
                line = raw.rstrip("\n")
                sink.append(line)
                self._recent.append(line)
                logger.debug("%s %s", name.upper(), line)

    def _kill_group(self, proc: subprocess.Popen) -> None:
        for sig, wait_s in ((signal.SIGTERM, self.grace_period), (signal.SIGKILL, None)):
            try:
                os.killpg(proc.pid, sig)
            except ProcessLookupError:
                break
            try:
                proc.wait(timeout=wait_s)
                # Leader gone; sweep stragglers left in the group.
                try:
                    os.killpg(proc.pid, signal.SIGKILL)
                except ProcessLookupError:
                    pass
                break
            except subprocess.TimeoutExpired:
                continue
