from __future__ import annotations

from typing import Optional, Sequence


class BuildError(RuntimeError):
    """Base for every failure the builder reports to the user.

    ``kind`` names the failure in summaries and reports; ``exit_code`` is the
    process exit status the CLI uses for it.
    """

    kind = "BuildError"
    exit_code = 1


class PrerequisiteMissing(BuildError):
    kind = "PrerequisiteMissing"
    exit_code = 4


class WorkspaceError(BuildError):
    kind = "WorkspaceError"
    exit_code = 5


class InsufficientSpace(WorkspaceError):
    kind = "InsufficientSpace"
    exit_code = 6


class WorkspaceBusy(WorkspaceError):
    kind = "WorkspaceBusy"
    exit_code = 3


class WorkspaceViolation(WorkspaceError):
    pass


class StageFailed(BuildError):
    kind = "StageFailed"
    exit_code = 10

    def __init__(
        self,
        message: str,
        *,
        argv: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr_tail: str = "",
    ) -> None:
        super().__init__(message)
        self.argv = list(argv or [])
        self.returncode = returncode
        self.stderr_tail = stderr_tail


class TimedOut(StageFailed):
    kind = "TimedOut"
    exit_code = 11


class RegistryError(BuildError):
    kind = "RegistryError"
    exit_code = 12


class CyclicDependency(RegistryError):
    kind = "CyclicDependency"


class ArtifactNotProduced(BuildError):
    kind = "ArtifactNotProduced"
    exit_code = 13


class BuildAborted(BuildError):
    """Raised when the run is interrupted by a signal."""

    kind = "Aborted"
    exit_code = 130
