from __future__ import annotations

import graphlib
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Set, Tuple

from .artifacts import Artifact
from .build_config import BuildConfig
from .errors import CyclicDependency, RegistryError
from .lib.command import CommandRunner
from .workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass
class BuildCtx:
    """Everything a stage may touch during one run.

    ``workspace`` is None until the workspace stage has prepared it.
    """

    cfg: BuildConfig
    runner: CommandRunner
    wipe: bool = False
    workspace: Optional[Workspace] = None
    state: Dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)
    artifact: Optional[Artifact] = None

    @property
    def ws(self) -> Workspace:
        if self.workspace is None:
            raise RuntimeError("workspace not prepared yet")
        return self.workspace


class Stage(Protocol):
    """A named unit of pipeline work."""

    step_id: str
    requires: Tuple[str, ...]
    idempotent: bool
    retryable: bool

    def run(self, ctx: BuildCtx) -> None:
        ...

    def inputs(self, ctx: BuildCtx) -> Mapping[str, Any]:
        ...

    def outputs(self, ctx: BuildCtx) -> List[Path]:
        ...


class BaseStage:
    step_id = ""
    requires: Tuple[str, ...] = ()
    idempotent = False
    retryable = False

    def run(self, ctx: BuildCtx) -> None:
        raise NotImplementedError

    def inputs(self, ctx: BuildCtx) -> Mapping[str, Any]:
        return {}

    def outputs(self, ctx: BuildCtx) -> List[Path]:
        return []

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.step_id}>"


class StageRegistry:
    def __init__(self, stages: Iterable[Stage] = ()) -> None:
        self._stages: Dict[str, Stage] = {}
        for s in stages:
            self.register(s)

    def register(self, stage: Stage) -> Stage:
        if not stage.step_id:
            raise RegistryError(f"Stage {stage!r} has no step_id")
        if stage.step_id in self._stages:
            raise RegistryError(f"Duplicate stage id: {stage.step_id}")
        self._stages[stage.step_id] = stage
        return stage

    def get(self, step_id: str) -> Stage:
        try:
            return self._stages[step_id]
        except KeyError:
            raise RegistryError(f"Unknown stage: {step_id}") from None

    @property
    def ids(self) -> List[str]:
        return list(self._stages)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._stages

    def __len__(self) -> int:
        return len(self._stages)

    def topological_order(self) -> List[Stage]:
        """Stages ordered so every stage follows its prerequisites.

        Among stages that are ready at the same time, registration order wins,
        so the result is identical across calls on an unchanged registry.
        """

        for s in self._stages.values():
            missing = [r for r in s.requires if r not in self._stages]
            if missing:
                raise RegistryError(f"Stage {s.step_id} requires unknown stage(s): {', '.join(missing)}")

        index = {sid: i for i, sid in enumerate(self._stages)}
        sorter = graphlib.TopologicalSorter({sid: set(s.requires) for sid, s in self._stages.items()})
        try:
            sorter.prepare()
        except graphlib.CycleError as e:
            cycle = e.args[1] if len(e.args) > 1 else []
            raise CyclicDependency(f"Stage prerequisites form a cycle: {' -> '.join(cycle)}") from None

        order: List[str] = []
        ready: Set[str] = set()
        while sorter.is_active():
            ready.update(sorter.get_ready())
            nxt = min(ready, key=index.__getitem__)
            ready.discard(nxt)
            order.append(nxt)
            sorter.done(nxt)
        return [self._stages[sid] for sid in order]

    def ancestors(self, step_id: str) -> Set[str]:
        seen: Set[str] = set()
        todo = list(self.get(step_id).requires)
        while todo:
            sid = todo.pop()
            if sid in seen:
                continue
            seen.add(sid)
            todo.extend(self.get(sid).requires)
        return seen
