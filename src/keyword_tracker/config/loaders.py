from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml


def load_config(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(str(path))
    suffix = path.suffix.lower()
    with path.open("r", encoding="utf-8") as handle:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(handle) or {}
        elif suffix == ".json":
            data = json.load(handle) or {}
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    if not isinstance(data, dict):
        raise ValueError("Config root must be an object")
    return data


def load_section(path: str | Path, name: str) -> list[dict[str, Any]]:
    """Return the list stored under ``name``, skipping entries that are not objects."""
    items = load_config(path).get(name) or []
    if not isinstance(items, list):
        raise ValueError(f"{name} must be a list")
    return [item for item in items if isinstance(item, dict)]
