from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .config import ScheduleParameters
from .errors import InvalidConfigurationError


def load_parameters(path: str | Path) -> ScheduleParameters:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(str(path))

    suffix = p.suffix.lower()
    raw: dict[str, Any]
    if suffix in {".yaml", ".yml"}:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    elif suffix == ".json":
        raw = json.loads(p.read_text(encoding="utf-8"))
    else:
        raise ValueError(f"Unsupported parameters format: {p.suffix} (expected .json/.yaml/.yml)")

    if not isinstance(raw, dict):
        raise InvalidConfigurationError(f"Invalid schedule parameters: {p} (expected a mapping)")
    try:
        return ScheduleParameters.from_mapping(raw)
    except InvalidConfigurationError as exc:
        raise InvalidConfigurationError(f"Invalid schedule parameters: {p}\n{exc}") from exc
