from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict, Optional


def load_build_state(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} must contain an object")
    return data


def save_build_state(path: Path, state: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)


def ensure_build_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    state.setdefault("stages", {})
    state.setdefault("image_started_at", None)
    state.setdefault("last_report", None)
    return state


def stage_record(state: Dict[str, Any], step_id: str) -> Optional[Dict[str, Any]]:
    return (state.get("stages") or {}).get(step_id)


def mark_completed(
    state: Dict[str, Any],
    *,
    step_id: str,
    input_hash: str,
    outputs: Dict[str, Any],
) -> None:
    state.setdefault("stages", {})[step_id] = {
        "input_hash": input_hash,
        "outputs": outputs,
        "completed_at": time.time(),
    }

