"""Persistence of the outputs document between runs."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import structlog

from .common.errors import StateError

LOGGER = structlog.get_logger("repoaccess.state")


def load_outputs(path: Path) -> dict[str, Any]:
    """Return the outputs of the previous run, or an empty document."""

    if not path.exists():
        LOGGER.info("No previous run state", path=str(path))
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise StateError(f"unable to read run state from {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise StateError(f"run state in {path} must be a JSON object")
    return data


def save_outputs(path: Path, outputs: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temporary = path.with_suffix(path.suffix + ".tmp")
    temporary.write_text(json.dumps(outputs, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    os.replace(temporary, path)
    LOGGER.info("Run state saved", path=str(path))
