"""Zori OS live-ISO builder (Python-first, stage-driven).

Core design goals:
- Declarative, ordered stages with explicit prerequisites
- Idempotent stages skipped when their inputs are unchanged
- Fail-fast, with a single cleanup path for failure and interruption
- Workspace-confined side effects
- Centralized logging
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
