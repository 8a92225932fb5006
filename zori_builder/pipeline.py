from __future__ import annotations

import contextlib
import enum
import logging
import os
import signal
import threading
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from .artifacts import Artifact
from .build_config import BuildConfig
from .build_state import ensure_build_defaults, load_build_state, mark_completed, save_build_state, stage_record
from .errors import BuildAborted, BuildError, StageFailed
from .lib.assets import path_fingerprint, stable_hash
from .lib.command import CommandRunner
from .logging_utils import attach_log_file, detach_log_file
from .registry import BuildCtx, Stage, StageRegistry

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class RunStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


class StageStatus(str, enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StageResult:
    step_id: str
    status: StageStatus
    duration: float = 0.0
    attempts: int = 0
    log_excerpt: str = ""
    reason: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


@dataclass
class BuildReport:
    status: RunStatus
    started_at: float
    stages: List[StageResult] = field(default_factory=list)
    finished_at: Optional[float] = None
    log_path: Optional[str] = None
    artifact: Optional[Artifact] = None
    failed_stage: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> List[StageResult]:
        return [s for s in self.stages if s.status is StageStatus.FAILED]

    def result(self, step_id: str) -> StageResult:
        for s in self.stages:
            if s.step_id == step_id:
                return s
        raise KeyError(step_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "log_path": self.log_path,
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "failed_stage": self.failed_stage,
            "error_kind": self.error_kind,
            "error": self.error,
            "stages": [s.to_dict() for s in self.stages],
        }

    def summary_lines(self) -> List[str]:
        lines = [f"Build {self.status.value}"]
        for s in self.stages:
            extra = f" ({s.reason})" if s.reason else ""
            if s.error_kind:
                extra = f" [{s.error_kind}: {s.error}]"
            lines.append(f"  {s.step_id:<22} {s.status.value:<8} {s.duration:7.1f}s{extra}")
        if self.artifact:
            lines.append(f"  image  {self.artifact.path}")
            lines.append(f"  size   {self.artifact.size} bytes")
            lines.append(f"  sha256 {self.artifact.sha256}")
        return lines


@contextlib.contextmanager
def abort_on_signals(signals=(signal.SIGTERM, signal.SIGHUP)) -> Iterator[None]:
    """Turn termination signals into BuildAborted for the duration of the block."""

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        raise BuildAborted(f"Received signal {signal.Signals(signum).name}")

    previous = {s: signal.signal(s, _handler) for s in signals}
    try:
        yield
    finally:
        for s, h in previous.items():
            signal.signal(s, h)


class PipelineExecutor:
    """Run registered stages in dependency order for a single build.

    Lifecycle is PENDING -> RUNNING -> SUCCEEDED | FAILED | ABORTED. The first
    non-retryable failure halts the run; later stages are reported but never
    invoked.
    """

    def __init__(
        self,
        *,
        cfg: BuildConfig,
        registry: StageRegistry,
        runner: Optional[CommandRunner] = None,
        wipe: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cfg = cfg
        self.registry = registry
        self.runner = runner or CommandRunner(dry_run=cfg.dry_run, default_timeout=cfg.command_timeout)
        self.wipe = wipe
        self.status = RunStatus.PENDING
        self._sleep = sleep
        self._attempts = 0
        self._bound = False

    def run(self) -> BuildReport:
        order = self.registry.topological_order()
        ctx = BuildCtx(cfg=self.cfg, runner=self.runner, wipe=self.wipe)
        report = BuildReport(status=RunStatus.RUNNING, started_at=ctx.started_at)
        self.status = RunStatus.RUNNING
        executed: Set[str] = set()
        self._bound = False

        with contextlib.ExitStack() as stack:
            stack.callback(_release_workspace, ctx)
            stack.callback(self.runner.terminate)
            stack.enter_context(abort_on_signals())
            try:
                for idx, stage in enumerate(order):
                    report.stages.append(self._run_stage(stage, ctx, executed, report, order[idx + 1 :]))
                    if not self._bound and ctx.workspace is not None:
                        self._bind_workspace(ctx, stack, report)
                report.artifact = ctx.artifact
                self.status = RunStatus.SUCCEEDED
            except (KeyboardInterrupt, BuildAborted) as e:
                self.status = RunStatus.ABORTED
                err = e if isinstance(e, BuildAborted) else BuildAborted("Interrupted")
                self._record_error(report, err)
                err.report = report  # type: ignore[attr-defined]
                if err is e:
                    raise
                raise err from None
            except Exception as e:
                self.status = RunStatus.FAILED
                self._record_error(report, e)
                e.report = report  # type: ignore[attr-defined]
                raise
            finally:
                report.status = self.status
                report.finished_at = time.time()
                self._finish(ctx, report)
        return report

    def _run_stage(
        self,
        stage: Stage,
        ctx: BuildCtx,
        executed: Set[str],
        report: BuildReport,
        remaining: List[Stage],
    ) -> StageResult:
        started = time.monotonic()
        self._attempts = 0
        try:
            return self._execute(stage, ctx, executed, started)
        except BaseException as e:
            report.stages.append(
                StageResult(
                    step_id=stage.step_id,
                    status=StageStatus.FAILED,
                    duration=time.monotonic() - started,
                    attempts=self._attempts,
                    log_excerpt=self._excerpt(e),
                    error_kind=_kind(e),
                    error=str(e) or type(e).__name__,
                )
            )
            report.failed_stage = stage.step_id
            for rest in remaining:
                report.stages.append(
                    StageResult(step_id=rest.step_id, status=StageStatus.SKIPPED, reason="not run: pipeline halted")
                )
            raise

    def _execute(self, stage: Stage, ctx: BuildCtx, executed: Set[str], started: float) -> StageResult:
        if stage.idempotent and self._bound and self._can_skip(stage, ctx, executed):
            logger.info("Skipping stage %s (inputs unchanged, outputs present)", stage.step_id)
            return StageResult(
                step_id=stage.step_id,
                status=StageStatus.SKIPPED,
                duration=time.monotonic() - started,
                reason="up to date",
            )

        logger.info("==> Stage %s", stage.step_id)
        self.runner.clear_excerpt()
        max_attempts = MAX_ATTEMPTS if stage.retryable else 1
        for attempt in range(1, max_attempts + 1):
            self._attempts = attempt
            try:
                stage.run(ctx)
                break
            except StageFailed as e:
                if attempt >= max_attempts:
                    raise
                delay = self.cfg.retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Stage %s failed (attempt %d/%d): %s; retrying in %.1fs",
                    stage.step_id,
                    attempt,
                    max_attempts,
                    e,
                    delay,
                )
                self._sleep(delay)

        if stage.idempotent:
            executed.add(stage.step_id)
            if self._bound and not self.cfg.dry_run:
                outputs = {str(p): path_fingerprint(p) for p in stage.outputs(ctx) if os.path.lexists(p)}
                mark_completed(
                    ctx.state,
                    step_id=stage.step_id,
                    input_hash=stable_hash(stage.inputs(ctx)),
                    outputs=outputs,
                )
        if self._bound:
            save_build_state(ctx.ws.state_path, ctx.state)
        _sync()

        duration = time.monotonic() - started
        logger.info("<== Stage %s done in %.1fs", stage.step_id, duration)
        return StageResult(
            step_id=stage.step_id,
            status=StageStatus.SUCCESS,
            duration=duration,
            attempts=self._attempts,
            log_excerpt=self.runner.excerpt(),
        )

    def _can_skip(self, stage: Stage, ctx: BuildCtx, executed: Set[str]) -> bool:
        if self.registry.ancestors(stage.step_id) & executed:
            return False
        rec = stage_record(ctx.state, stage.step_id)
        if not rec:
            return False
        if rec.get("input_hash") != stable_hash(stage.inputs(ctx)):
            logger.debug("Stage %s inputs changed", stage.step_id)
            return False

        recorded: Dict[str, Any] = rec.get("outputs") or {}
        current = {str(p) for p in stage.outputs(ctx)}
        if not current or current != set(recorded):
            return False
        for path, fp in recorded.items():
            if not os.path.lexists(path) or path_fingerprint(Path(path)) != fp:
                logger.debug("Stage %s output %s changed", stage.step_id, path)
                return False
        return True

    def _bind_workspace(self, ctx: BuildCtx, stack: contextlib.ExitStack, report: BuildReport) -> None:
        ws = ctx.ws
        handler = attach_log_file(ws.log_path)
        stack.callback(detach_log_file, handler)
        report.log_path = str(ws.log_path)
        ctx.state = ensure_build_defaults(load_build_state(ws.state_path))
        self._bound = True

    def _record_error(self, report: BuildReport, e: BaseException) -> None:
        report.error_kind = _kind(e)
        report.error = str(e) or type(e).__name__

    def _excerpt(self, e: BaseException) -> str:
        text = self.runner.excerpt()
        tail = getattr(e, "stderr_tail", "")
        if tail and tail not in text:
            text = "\n".join(t for t in (text, tail) if t)
        return text

    def _finish(self, ctx: BuildCtx, report: BuildReport) -> None:
        for line in report.summary_lines():
            logger.info("%s", line)
        if not self._bound:
            return
        ctx.state["last_report"] = report.to_dict()
        try:
            save_build_state(ctx.ws.state_path, ctx.state)
        except OSError:
            logger.exception("Could not persist build report")


def _kind(e: BaseException) -> str:
    if isinstance(e, BuildError):
        return e.kind
    if isinstance(e, KeyboardInterrupt):
        return BuildAborted.kind
    return type(e).__name__


def _sync() -> None:
    # Stage N's files must be on disk before stage N+1 reads them.
    if hasattr(os, "sync"):
        os.sync()


def _release_workspace(ctx: BuildCtx) -> None:
    if ctx.workspace is not None:
        ctx.workspace.release()
